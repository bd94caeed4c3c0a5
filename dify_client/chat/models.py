"""
Request and blocking-response models for the chat-messages endpoint.

These pydantic models mirror the JSON bodies exchanged with
``POST /v1/chat-messages``:
- ChatMessageRequest is sent by both call paths
- ChatMessageResponse is returned in blocking mode
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ResponseMode = Literal["blocking", "streaming"]

CHAT_MESSAGES_PATH = "/v1/chat-messages"


class ChatMessageRequest(BaseModel):
    """Chat request body; response_mode is set by the call path."""
    model_config = ConfigDict(validate_assignment=True)

    inputs: dict[str, Any] = Field(default_factory=dict)
    query: str
    response_mode: ResponseMode = "blocking"
    conversation_id: str | None = None
    user: str
    files: list[dict[str, Any]] | None = None
    auto_generate_name: bool | None = None

    def to_body(self) -> dict[str, Any]:
        """JSON body with unset optional fields omitted."""
        return self.model_dump(mode="json", exclude_none=True)


class ChatMessageResponse(BaseModel):
    """Complete answer returned in blocking mode."""
    event: str = ""
    id: str = ""
    message_id: str = ""
    task_id: str = ""
    mode: str = ""
    answer: str = ""
    conversation_id: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: int = 0
