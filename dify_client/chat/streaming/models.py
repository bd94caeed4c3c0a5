"""
Typed records for chat stream events.

Every ``data:`` frame carries a JSON object whose ``event`` field selects one
of the models below. Fields default to zero values so sparse frames decode;
unknown keys are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ...exceptions import ServerEventError


class StreamEventType(Enum):
    """Event discriminators with a typed record."""
    MESSAGE = "message"
    MESSAGE_FILE = "message_file"
    MESSAGE_END = "message_end"
    MESSAGE_REPLACE = "message_replace"
    TTS_MESSAGE = "tts_message"
    TTS_MESSAGE_END = "tts_message_end"
    WORKFLOW_STARTED = "workflow_started"
    WORKFLOW_FINISHED = "workflow_finished"
    NODE_STARTED = "node_started"
    NODE_FINISHED = "node_finished"
    ERROR = "error"


class StreamEvent(BaseModel):
    """Fields shared by every stream event."""
    model_config = ConfigDict(extra="ignore")

    event: str = ""


class MessageEvent(StreamEvent):
    """A chunk of the answer text."""
    task_id: str = ""
    answer: str = ""
    created_at: int = 0
    conversation_id: str = ""
    message_id: str = ""


class MessageReplaceEvent(MessageEvent):
    """Replaces the answer accumulated so far (content moderation)."""
    pass


class MessageFileEvent(StreamEvent):
    id: str = ""
    type: str = ""
    belongs_to: str = ""
    url: str = ""
    created_at: int = 0
    conversation_id: str = ""


class MessageEndEvent(StreamEvent):
    task_id: str = ""
    message_id: str = ""
    created_at: int = 0
    conversation_id: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class TTSMessageEvent(StreamEvent):
    """Base64 encoded audio chunk."""
    task_id: str = ""
    message_id: str = ""
    created_at: int = 0
    audio: str = ""


class TTSMessageEndEvent(TTSMessageEvent):
    pass


class WorkflowStartedData(BaseModel):
    id: str = ""
    workflow_id: str = ""
    sequence_number: int = 0
    created_at: datetime | None = None


class WorkflowFinishedData(BaseModel):
    id: str = ""
    workflow_id: str = ""
    status: str = ""
    outputs: dict[str, Any] | None = None
    error: str | None = None
    elapsed_time: float = 0.0
    total_tokens: int = 0
    total_steps: int = 0
    created_at: datetime | None = None
    finished_at: datetime | None = None


class NodeStartedData(BaseModel):
    id: str = ""
    node_id: str = ""
    node_type: str = ""
    title: str = ""
    index: int = 0
    predecessor_node_id: str | None = None
    inputs: dict[str, Any] | None = None
    created_at: datetime | None = None


class NodeExecutionMetadata(BaseModel):
    total_tokens: int = 0
    total_price: float = 0.0
    currency: str = ""


class NodeFinishedData(BaseModel):
    id: str = ""
    node_id: str = ""
    title: str = ""
    index: int = 0
    predecessor_node_id: str | None = None
    inputs: dict[str, Any] | None = None
    process_data: dict[str, Any] | None = None
    status: str = ""
    error: str | None = None
    elapsed_time: float = 0.0
    created_at: datetime | None = None
    execution_metadata: NodeExecutionMetadata | None = None


class WorkflowEvent(StreamEvent):
    task_id: str = ""
    workflow_run_id: str = ""


class WorkflowStartedEvent(WorkflowEvent):
    data: WorkflowStartedData = Field(default_factory=WorkflowStartedData)


class WorkflowFinishedEvent(WorkflowEvent):
    data: WorkflowFinishedData = Field(default_factory=WorkflowFinishedData)


class NodeStartedEvent(WorkflowEvent):
    data: NodeStartedData = Field(default_factory=NodeStartedData)


class NodeFinishedEvent(WorkflowEvent):
    data: NodeFinishedData = Field(default_factory=NodeFinishedData)


class ErrorEvent(StreamEvent):
    """Error relayed by the server while generating the answer."""
    task_id: str = ""
    message_id: str = ""
    status: int | str = ""
    code: str = ""
    message: str = ""


ChatStreamEvent = (
    MessageEvent
    | MessageReplaceEvent
    | MessageFileEvent
    | MessageEndEvent
    | TTSMessageEvent
    | TTSMessageEndEvent
    | WorkflowStartedEvent
    | WorkflowFinishedEvent
    | NodeStartedEvent
    | NodeFinishedEvent
    | ErrorEvent
)

STREAM_EVENT_MODELS: dict[str, type[StreamEvent]] = {
    StreamEventType.MESSAGE.value: MessageEvent,
    StreamEventType.MESSAGE_FILE.value: MessageFileEvent,
    StreamEventType.MESSAGE_END.value: MessageEndEvent,
    StreamEventType.MESSAGE_REPLACE.value: MessageReplaceEvent,
    StreamEventType.TTS_MESSAGE.value: TTSMessageEvent,
    StreamEventType.TTS_MESSAGE_END.value: TTSMessageEndEvent,
    StreamEventType.WORKFLOW_STARTED.value: WorkflowStartedEvent,
    StreamEventType.WORKFLOW_FINISHED.value: WorkflowFinishedEvent,
    StreamEventType.NODE_STARTED.value: NodeStartedEvent,
    StreamEventType.NODE_FINISHED.value: NodeFinishedEvent,
    StreamEventType.ERROR.value: ErrorEvent,
}


@dataclass
class ChatAnswer:
    """Answer accumulated from a drained stream."""
    answer: str = ""
    conversation_id: str = ""
    message_id: str = ""
    task_id: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    message_count: int = 0


@dataclass(frozen=True)
class ChatStreamMessage:
    """One decoded frame, or the in-band error that ended the stream."""
    event: str
    data: ChatStreamEvent | None = None
    error: Exception | None = None
    raw: str = ""

    @property
    def is_error(self) -> bool:
        """True for decode/read failures and relayed error events."""
        return self.error is not None or isinstance(self.data, ErrorEvent)

    def raise_for_error(self) -> None:
        """Raise the carried error, or ServerEventError for a relayed error event."""
        if self.error is not None:
            raise self.error
        if isinstance(self.data, ErrorEvent):
            raise ServerEventError(
                self.data.message or "Server reported an error",
                code=self.data.code,
                task_id=self.data.task_id,
                message_id=self.data.message_id,
                status_code=(
                    int(self.data.status)
                    if str(self.data.status).isdigit() else None
                ),
            )
