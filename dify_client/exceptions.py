"""
Error types for Dify chat operations.

This module provides the error hierarchy shared by both call paths:
- Transport failures and non-2xx responses (raised to the caller)
- Mid-stream read failures (delivered in-band on the stream)
- Malformed payloads (raised in blocking mode, in-band when streaming)
- Error events relayed by the server
"""

from __future__ import annotations

from typing import Any


class DifyError(Exception):
    """Base Dify client error with response context."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data or {}


class TransportError(DifyError):
    """The request could not be executed (connect, timeout, protocol)."""
    pass


class APIStatusError(TransportError):
    """The server answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: int,
        code: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, status_code=status_code, **kwargs)
        self.code = code


class StreamReadError(DifyError):
    """Reading the response stream failed after it was opened."""
    pass


class DecodeError(DifyError):
    """A payload was not valid JSON or did not match the expected shape."""

    def __init__(self, message: str, payload: str = "", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.payload = payload


class ServerEventError(DifyError):
    """The server relayed an ``error`` event on the stream."""

    def __init__(
        self,
        message: str,
        code: str = "",
        task_id: str = "",
        message_id: str = "",
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.code = code
        self.task_id = task_id
        self.message_id = message_id
