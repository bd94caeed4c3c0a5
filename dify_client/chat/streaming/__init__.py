"""
Streaming support for the chat-messages endpoint.

This package contains:
- Typed stream event records
- Line framing and frame decoding
- The background decoding session (ChatMessageStream)
"""

from __future__ import annotations

from .models import ChatAnswer, ChatStreamEvent, ChatStreamMessage, StreamEventType
from .parser import ChatStreamParser, LineReader
from .stream import ChatMessageStream

__all__ = [
    "ChatAnswer",
    "ChatMessageStream",
    "ChatStreamEvent",
    "ChatStreamMessage",
    "ChatStreamParser",
    "LineReader",
    "StreamEventType",
]
