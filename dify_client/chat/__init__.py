"""Chat-messages API client."""

from __future__ import annotations

from .client import ChatClient
from .models import ChatMessageRequest, ChatMessageResponse

__all__ = [
    "ChatClient",
    "ChatMessageRequest",
    "ChatMessageResponse",
]
