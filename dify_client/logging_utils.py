"""
Centralized logging and error handling utilities for the Dify client.

This module provides decorators and helper functions to standardize logging
and error handling patterns across the client, so every HTTP call and stream
session reports failures the same way.

Features:
- Structured logging with contextual information
- Transport error conversion decorator
- Automatic error type detection and classification
- Performance timing
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

import httpx
import structlog
from pydantic import ValidationError

from .exceptions import (
    APIStatusError,
    DecodeError,
    DifyError,
    StreamReadError,
    TransportError,
)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Type variables for generic decorators
P = ParamSpec("P")
T = TypeVar("T")
AsyncCallable = Callable[P, Awaitable[T]]

logger = structlog.get_logger(__name__)


def configure_logging(level: str | int = "INFO") -> None:
    """Set the stdlib level that structlog's level filter honours."""
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown logging level '{level}'")
        level = resolved
    logging.basicConfig(level=level, format="%(message)s")
    logging.getLogger().setLevel(level)


class DifyErrorHandler:
    """Centralized error classification with structured logging."""

    @staticmethod
    def classify_error(error: BaseException) -> str:
        """
        Classify an error into a category used in structured logs.

        Args:
            error: The exception to classify

        Returns:
            The error category name
        """
        if isinstance(error, APIStatusError):
            return "status_error"
        if isinstance(error, TransportError):
            return "transport_error"
        if isinstance(error, StreamReadError):
            return "stream_read_error"
        if isinstance(error, DecodeError):
            return "decode_error"
        if isinstance(error, ValidationError):
            return "validation_error"
        if isinstance(error, TimeoutError | httpx.TimeoutException):
            return "timeout_error"
        if isinstance(error, ConnectionError | OSError | httpx.TransportError):
            return "connection_error"
        if isinstance(error, ValueError | TypeError):
            return "parameter_error"
        return "unknown_error"

    @staticmethod
    def create_transport_error(
        error: Exception,
        operation: str,
        context: dict[str, Any] | None = None,
    ) -> TransportError:
        """
        Create a TransportError for a failed HTTP exchange and log it.

        Args:
            error: Original exception
            operation: Description of the operation that failed
            context: Additional context for logging and error data

        Returns:
            TransportError carrying the operation context
        """
        error_category = DifyErrorHandler.classify_error(error)
        context = context or {}

        logger.error(
            "Operation failed",
            operation=operation,
            error_type=type(error).__name__,
            error_category=error_category,
            error_message=str(error),
            **context,
        )

        return TransportError(
            f"{operation} failed: {error!s}",
            response_data={
                "operation": operation,
                "error_category": error_category,
                "original_error_type": type(error).__name__,
                **context,
            },
        )


def log_operation(
    operation: str,
) -> Callable[[AsyncCallable[P, T]], AsyncCallable[P, T]]:
    """
    Decorator for logging async client calls with structured context.

    Args:
        operation: Name of the call being performed

    Returns:
        Decorated function with logging and timing
    """
    def decorator(func: AsyncCallable[P, T]) -> AsyncCallable[P, T]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            operation_logger = logger.bind(
                operation=operation, function=func.__name__
            )
            operation_logger.debug("Operation started")
            start_time = time.perf_counter()

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                operation_logger.error(
                    "Operation failed",
                    error_type=type(e).__name__,
                    error_category=DifyErrorHandler.classify_error(e),
                    error_message=str(e),
                    duration_ms=_elapsed_ms(start_time),
                )
                raise

            operation_logger.info(
                "Operation completed successfully",
                duration_ms=_elapsed_ms(start_time),
            )
            return result

        return wrapper
    return decorator


def _elapsed_ms(start_time: float) -> float:
    return round((time.perf_counter() - start_time) * 1000, 2)


def _request_context(error: httpx.HTTPError) -> dict[str, Any]:
    # .request raises when the error was built without one
    try:
        request = error.request
    except RuntimeError:
        return {}
    return {"method": request.method, "url": str(request.url)}


def handle_transport_errors(
    operation: str,
) -> Callable[[AsyncCallable[P, T]], AsyncCallable[P, T]]:
    """
    Decorator converting httpx failures into TransportError.

    DifyError subclasses raised by the wrapped function pass through as-is.
    The failed request's method and URL are added to the error data.

    Args:
        operation: Description of the operation for error context

    Returns:
        Decorated function with transport error handling
    """
    def decorator(func: AsyncCallable[P, T]) -> AsyncCallable[P, T]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return await func(*args, **kwargs)
            except DifyError:
                raise
            except httpx.HTTPError as e:
                raise DifyErrorHandler.create_transport_error(
                    e, operation, _request_context(e)
                ) from e

        return wrapper
    return decorator


class ContextualLogger:
    """Logger that maintains context across a stream session."""

    def __init__(
        self,
        base_context: dict[str, Any] | None = None,
        *,
        name: str = __name__,
    ):
        self.base_context = base_context or {}
        self.name = name
        self._logger = structlog.get_logger(name).bind(**self.base_context)

    def bind(self, **context: Any) -> ContextualLogger:
        """Create a new logger with additional context."""
        merged_context = {**self.base_context, **context}
        return ContextualLogger(merged_context, name=self.name)

    def info(self, message: str, **context: Any) -> None:
        self._logger.info(message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._logger.warning(message, **context)

    def error(self, message: str, **context: Any) -> None:
        self._logger.error(message, **context)

    def debug(self, message: str, **context: Any) -> None:
        self._logger.debug(message, **context)
