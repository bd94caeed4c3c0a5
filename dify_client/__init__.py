"""
Async client for the Dify chat-messages API.

This package provides:
- Blocking and streaming chat calls over httpx
- Typed pydantic records for every stream event
- A background stream decoder with backpressure and cancellation
- YAML/.env configuration and structlog logging
"""

from __future__ import annotations

from .chat import ChatClient, ChatMessageRequest, ChatMessageResponse
from .chat.streaming import ChatAnswer, ChatMessageStream, ChatStreamMessage
from .config import Configuration
from .exceptions import (
    APIStatusError,
    DecodeError,
    DifyError,
    ServerEventError,
    StreamReadError,
    TransportError,
)
from .transport import Transport

__all__ = [
    # Client
    "ChatClient",
    "ChatMessageStream",
    "Configuration",
    "Transport",
    # Models
    "ChatAnswer",
    "ChatMessageRequest",
    "ChatMessageResponse",
    "ChatStreamMessage",
    # Exceptions
    "APIStatusError",
    "DecodeError",
    "DifyError",
    "ServerEventError",
    "StreamReadError",
    "TransportError",
]
