"""
Frame parser for the chat-messages event stream.

The stream is newline-delimited. Lines starting with ``data:`` carry a JSON
object whose ``event`` field selects the typed record; every other line is
protocol noise (comments, keepalives) and is skipped.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from pydantic import ValidationError
from pydantic_core import from_json

from ...exceptions import DecodeError
from ...logging_utils import ContextualLogger
from .models import STREAM_EVENT_MODELS, ChatStreamMessage, StreamEvent, StreamEventType

FRAME_PREFIX = b"data:"
LINE_DELIMITER = b"\n"


class LineReader:
    """Splits an async byte iterator into newline-terminated lines."""

    def __init__(self, chunks: AsyncIterator[bytes]):
        self._chunks = chunks
        self._buffer = bytearray()
        self._eof = False
        self.discarded_bytes = 0

    async def readline(self) -> bytes:
        """
        Return the next line including its delimiter, or b"" at end of input.

        Bytes left over after the last delimiter when the input ends do not
        form a line and are dropped.
        """
        while True:
            index = self._buffer.find(LINE_DELIMITER)
            if index >= 0:
                line = bytes(self._buffer[:index + 1])
                del self._buffer[:index + 1]
                return line

            if self._eof:
                return b""

            try:
                chunk = await anext(self._chunks)
            except StopAsyncIteration:
                self._eof = True
                self.discarded_bytes = len(self._buffer)
                self._buffer.clear()
                return b""

            self._buffer.extend(chunk)

    async def aclose(self) -> None:
        """Finalize the underlying iterator if it supports it."""
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            await aclose()


def extract_payload(line: bytes) -> bytes | None:
    """Return the trimmed payload of a ``data:`` line, None for anything else."""
    if not line.startswith(FRAME_PREFIX):
        return None
    payload = line[len(FRAME_PREFIX):].strip()
    return payload or None


def probe_event(payload: bytes) -> str:
    """
    Read only the ``event`` discriminator from a frame payload.

    The probe tolerates truncated JSON so a damaged frame still reports which
    record it was meant to be; the full decode then rejects it. Payloads that
    are not a JSON object (``[DONE]``, bare strings, numbers) have no
    discriminator and probe as ``""``.
    """
    try:
        envelope = from_json(payload, allow_partial=True)
    except ValueError:
        return ""

    if not isinstance(envelope, dict):
        return ""

    event = envelope.get("event")
    return event if isinstance(event, str) else ""


def decode_event(event: str, payload: bytes) -> StreamEvent | None:
    """
    Fully decode a payload into the record registered for its discriminator.

    Returns None for discriminators without a record.

    Raises:
        DecodeError: If the payload does not match the record.
    """
    model = STREAM_EVENT_MODELS.get(event)
    if model is None:
        return None
    try:
        return model.model_validate_json(payload)
    except ValidationError as e:
        raise DecodeError(
            f"malformed '{event}' event: {e}",
            payload=payload.decode("utf-8", errors="replace"),
        ) from e


class ChatStreamParser:
    """Turns protocol lines into ChatStreamMessage values and keeps counters."""

    def __init__(self, logger: ContextualLogger | None = None):
        self._log = logger or ContextualLogger(
            {"component": "chat_stream_parser"}, name=__name__
        )
        self.stats = {
            'total_frames': 0,
            'skipped_lines': 0,
            'unknown_events': 0,
            'error_frames': 0,
        }

    def parse_line(self, line: bytes) -> ChatStreamMessage | None:
        """
        Decode one protocol line.

        Returns None for lines that carry no frame. A returned message with
        ``error`` set means the frame could not be decoded and the stream
        must not continue.
        """
        payload = extract_payload(line)
        if payload is None:
            self.stats['skipped_lines'] += 1
            return None

        self.stats['total_frames'] += 1
        raw = payload.decode("utf-8", errors="replace")

        event = probe_event(payload)
        frame_log = self._log.bind(event_type=event)

        try:
            data = decode_event(event, payload)
        except DecodeError as e:
            self.stats['error_frames'] += 1
            frame_log.warning(
                "Malformed stream frame", error_message=str(e), payload=raw[:200]
            )
            return ChatStreamMessage(
                event=StreamEventType.ERROR.value, error=e, raw=raw
            )

        if data is None:
            self.stats['unknown_events'] += 1
            frame_log.debug("Passing through unrecognized event")
        else:
            frame_log.bind(task_id=getattr(data, "task_id", "")).debug(
                "Decoded stream frame"
            )

        return ChatStreamMessage(event=event, data=data, raw=raw)

    def get_stats(self) -> dict[str, int]:
        """Get parsing statistics for monitoring."""
        return self.stats.copy()
