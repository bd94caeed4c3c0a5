"""
HTTP transport for the Dify API.

Builds authenticated requests and executes them either fully buffered (JSON
decoded into a pydantic model) or streamed (a live response the caller owns).
"""

from __future__ import annotations

from typing import Any, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from .exceptions import APIStatusError, DecodeError
from .logging_utils import handle_transport_errors

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

HTTP_OK_MIN = 200
HTTP_OK_MAX = 299


class Transport:
    """Authenticated httpx client for one Dify application."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: httpx.Timeout | float | None = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key must not be empty")

        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self.client: httpx.AsyncClient = http_client or httpx.AsyncClient(
            timeout=timeout,
        )
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    @classmethod
    def from_config(
        cls,
        api_config: dict[str, Any],
        api_key: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> Transport:
        """Create a transport from ``Configuration.get_api_config()``."""
        timeout_config = api_config["timeout"]
        timeout = httpx.Timeout(
            connect=timeout_config["connect"],
            read=timeout_config["read"],
            write=timeout_config["write"],
            pool=timeout_config["pool"],
        )
        return cls(
            api_config["base_url"],
            api_key,
            timeout=timeout,
            http_client=http_client,
        )

    def build_request(
        self, method: str, path: str, body: dict[str, Any] | None = None
    ) -> httpx.Request:
        """Build an authenticated request with a JSON body."""
        return self.client.build_request(
            method,
            f"{self.base_url}{path}",
            json=body,
            headers=self._headers,
        )

    @handle_transport_errors("send_request")
    async def send_request(self, request: httpx.Request) -> httpx.Response:
        """
        Execute a request and return the open, streamed response.

        The caller owns the returned response and must close it.

        Raises:
            TransportError: If the request could not be executed.
            APIStatusError: If the server answered with a non-2xx status.
        """
        response = await self.client.send(request, stream=True)
        if not HTTP_OK_MIN <= response.status_code <= HTTP_OK_MAX:
            try:
                await response.aread()
            finally:
                await response.aclose()
            raise self._status_error(response)
        return response

    @handle_transport_errors("send_json_request")
    async def send_json_request(
        self, request: httpx.Request, model: type[ModelT]
    ) -> ModelT:
        """
        Execute a request and decode the JSON body into ``model``.

        Raises:
            TransportError: If the request could not be executed.
            APIStatusError: If the server answered with a non-2xx status.
            DecodeError: If the body does not match ``model``.
        """
        response = await self.client.send(request)
        if not HTTP_OK_MIN <= response.status_code <= HTTP_OK_MAX:
            raise self._status_error(response)

        try:
            return model.model_validate_json(response.content)
        except ValidationError as e:
            logger.error(
                "Unexpected response format",
                model=model.__name__,
                error_message=str(e),
            )
            raise DecodeError(
                f"Unexpected response format: {e}",
                payload=response.text,
                status_code=response.status_code,
            ) from e

    @staticmethod
    def _status_error(response: httpx.Response) -> APIStatusError:
        """Map a non-2xx response to APIStatusError using Dify's error body."""
        body: dict[str, Any] = {}
        try:
            parsed = response.json()
            if isinstance(parsed, dict):
                body = parsed
        except ValueError:
            pass

        message = body.get("message") or response.text or response.reason_phrase
        logger.error(
            "API returned error status",
            status_code=response.status_code,
            code=body.get("code"),
            error_message=message,
        )
        return APIStatusError(
            f"API error {response.status_code}: {message}",
            status_code=response.status_code,
            code=body.get("code"),
            response_data=body,
        )

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> Transport:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
