#!/usr/bin/env python3
"""
Tests for the background chat stream session: delivery, termination,
backpressure and cancellation.
"""

import asyncio

import httpx
import pytest

from dify_client.chat.streaming.models import MessageEndEvent, MessageEvent
from dify_client.chat.streaming.stream import ChatMessageStream
from dify_client.exceptions import DecodeError, ServerEventError, StreamReadError


class FakeSource:
    """Byte source standing in for a response body."""

    def __init__(
        self,
        *chunks: bytes,
        error: Exception | None = None,
        hang: bool = False,
    ):
        self.chunks = chunks
        self.error = error
        self.hang = hang
        self.yielded = 0
        self.closed = asyncio.Event()

    async def iterate(self):
        for chunk in self.chunks:
            self.yielded += 1
            yield chunk
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()

    async def close(self) -> None:
        self.closed.set()

    def open_stream(self, **kwargs) -> ChatMessageStream:
        return ChatMessageStream(self.iterate(), self.close, **kwargs)


async def collect(stream: ChatMessageStream) -> list:
    return [message async for message in stream]


class TestStreamDelivery:
    """Test normal delivery and clean termination."""

    @pytest.mark.asyncio
    async def test_two_events_then_clean_close(self):
        source = FakeSource(
            b'data: {"event":"message","task_id":"t1","answer":"hi"}\n',
            b'data: {"event":"message_end","task_id":"t1"}\n',
        )
        messages = await collect(source.open_stream())

        assert [m.event for m in messages] == ["message", "message_end"]
        assert all(m.error is None for m in messages)
        assert isinstance(messages[0].data, MessageEvent)
        assert messages[0].data.answer == "hi"
        assert isinstance(messages[1].data, MessageEndEvent)
        assert source.closed.is_set()

    @pytest.mark.asyncio
    async def test_keepalive_line_discarded(self):
        source = FakeSource(
            b": keepalive\n",
            b'data: {"event":"message","task_id":"t1"}\n',
        )
        stream = source.open_stream()
        messages = await collect(stream)

        assert [m.event for m in messages] == ["message"]
        assert stream.closed
        assert stream.stats["skipped_lines"] == 1

    @pytest.mark.asyncio
    async def test_empty_payloads_produce_nothing(self):
        source = FakeSource(b"data:\n", b"data:   \r\n", b"\n", b"event: ping\n")
        assert await collect(source.open_stream()) == []
        assert source.closed.is_set()

    @pytest.mark.asyncio
    async def test_empty_stream_closes_without_error(self):
        source = FakeSource()
        assert await collect(source.open_stream()) == []
        assert source.closed.is_set()

    @pytest.mark.asyncio
    async def test_frames_split_across_reads(self):
        source = FakeSource(
            b'data: {"event":"mess',
            b'age","answer":"a"}\ndata: {"event":"message","answer":"b"}',
            b"\n",
        )
        messages = await collect(source.open_stream())
        assert [m.data.answer for m in messages] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_unterminated_trailing_frame_is_dropped(self):
        source = FakeSource(
            b'data: {"event":"message","answer":"a"}\n',
            b'data: {"event":"message","answer":"b"}',
        )
        messages = await collect(source.open_stream())
        assert [m.data.answer for m in messages] == ["a"]

    @pytest.mark.asyncio
    async def test_unrecognized_event_passes_through(self):
        source = FakeSource(
            b'data: {"event":"agent_thought","thought":"hmm"}\n',
            b'data: {"event":"message","answer":"ok"}\n',
        )
        messages = await collect(source.open_stream())

        assert [m.event for m in messages] == ["agent_thought", "message"]
        assert messages[0].data is None
        assert messages[0].error is None
        assert '"thought":"hmm"' in messages[0].raw

    @pytest.mark.asyncio
    async def test_wire_error_event_does_not_end_stream(self):
        source = FakeSource(
            b'data: {"event":"error","code":"completion_request_error","message":"x"}\n',
            b'data: {"event":"message","answer":"after"}\n',
        )
        messages = await collect(source.open_stream())

        assert [m.event for m in messages] == ["error", "message"]
        assert messages[0].error is None
        with pytest.raises(ServerEventError) as exc_info:
            messages[0].raise_for_error()
        assert exc_info.value.code == "completion_request_error"


class TestStreamErrors:
    """Test terminal error handling."""

    @pytest.mark.asyncio
    async def test_truncated_frame_is_last_message(self):
        source = FakeSource(b'data: {"event":"message","task_id":\n')
        messages = await collect(source.open_stream())

        assert len(messages) == 1
        assert messages[0].event == "error"
        assert isinstance(messages[0].error, DecodeError)
        assert source.closed.is_set()

    @pytest.mark.asyncio
    async def test_decode_error_stops_processing_later_frames(self):
        source = FakeSource(
            b'data: {"event":"message","answer":"first"}\n',
            b'data: {"event":"message_end","task_id":[]}\n'
            b'data: {"event":"message","answer":"never"}\n',
        )
        stream = source.open_stream()
        messages = await collect(stream)

        assert [m.event for m in messages] == ["message", "error"]
        assert isinstance(messages[-1].error, DecodeError)
        assert stream.stats["total_frames"] == 2
        assert source.closed.is_set()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "frame", [b"data: [DONE]\n", b"data: ping\n", b'data: "text"\n', b"data: 42\n"]
    )
    async def test_non_object_payload_passes_through(self, frame):
        source = FakeSource(frame, b'data: {"event":"message","answer":"after"}\n')
        stream = source.open_stream()
        messages = await collect(stream)

        assert [m.event for m in messages] == ["", "message"]
        assert messages[0].data is None
        assert messages[0].error is None
        assert messages[1].data.answer == "after"
        assert stream.stats["unknown_events"] == 1
        assert stream.stats["error_frames"] == 0

    @pytest.mark.asyncio
    async def test_read_failure_is_last_message(self):
        cause = httpx.ReadError("connection dropped")
        source = FakeSource(
            b'data: {"event":"message","answer":"partial"}\n',
            error=cause,
        )
        messages = await collect(source.open_stream())

        assert [m.event for m in messages] == ["message", "error"]
        error = messages[-1].error
        assert isinstance(error, StreamReadError)
        assert error.__cause__ is cause
        assert "connection dropped" in str(error)
        assert source.closed.is_set()

    @pytest.mark.asyncio
    async def test_raise_for_error_reraises_carried_error(self):
        source = FakeSource(error=httpx.RemoteProtocolError("peer closed"))
        messages = await collect(source.open_stream())

        with pytest.raises(StreamReadError):
            messages[0].raise_for_error()


class TestBackpressureAndCancellation:
    """Test the one-slot channel and cancellation paths."""

    @pytest.mark.asyncio
    async def test_reader_stays_one_message_ahead(self):
        source = FakeSource(
            b'data: {"event":"message","answer":"1"}\n',
            b'data: {"event":"message","answer":"2"}\n',
            b'data: {"event":"message","answer":"3"}\n',
            b'data: {"event":"message","answer":"4"}\n',
        )
        stream = source.open_stream()
        await asyncio.sleep(0.05)

        # One message queued, one decoded and waiting for room
        assert source.yielded == 2
        assert stream.stats["total_frames"] == 2

        first = await anext(stream)
        assert first.data.answer == "1"
        rest = await collect(stream)
        assert [m.data.answer for m in rest] == ["2", "3", "4"]

    @pytest.mark.asyncio
    async def test_aclose_before_any_frame(self):
        source = FakeSource(hang=True)
        stream = source.open_stream()
        await asyncio.sleep(0)

        await asyncio.wait_for(stream.aclose(), timeout=1)

        assert source.closed.is_set()
        assert stream.closed
        assert await collect(stream) == []

    @pytest.mark.asyncio
    async def test_aclose_immediately_after_open(self):
        source = FakeSource(b'data: {"event":"message"}\n')
        stream = source.open_stream()
        await stream.aclose()

        assert source.closed.is_set()
        assert await collect(stream) == []

    @pytest.mark.asyncio
    async def test_cancel_event_releases_blocked_stream(self):
        cancel = asyncio.Event()
        source = FakeSource(hang=True)
        stream = source.open_stream(cancel_event=cancel)
        await asyncio.sleep(0)

        cancel.set()
        await asyncio.wait_for(source.closed.wait(), timeout=1)
        assert await collect(stream) == []

    @pytest.mark.asyncio
    async def test_cancel_event_wakes_waiting_consumer(self):
        cancel = asyncio.Event()
        source = FakeSource(b'data: {"event":"message","answer":"1"}\n', hang=True)
        stream = source.open_stream(cancel_event=cancel)

        first = await anext(stream)
        assert first.data.answer == "1"

        consumer = asyncio.create_task(collect(stream))
        await asyncio.sleep(0)
        cancel.set()

        assert await asyncio.wait_for(consumer, timeout=1) == []
        await asyncio.wait_for(source.closed.wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_cancel_while_producer_waits_for_consumer(self):
        source = FakeSource(
            b'data: {"event":"message","answer":"1"}\n',
            b'data: {"event":"message","answer":"2"}\n',
            b'data: {"event":"message","answer":"3"}\n',
        )
        async with source.open_stream() as stream:
            await asyncio.sleep(0.05)
        assert source.closed.is_set()
        assert await collect(stream) == []

    @pytest.mark.asyncio
    async def test_cancel_event_set_before_open(self):
        cancel = asyncio.Event()
        cancel.set()
        source = FakeSource(b'data: {"event":"message"}\n')
        stream = source.open_stream(cancel_event=cancel)

        assert await collect(stream) == []
        await asyncio.wait_for(source.closed.wait(), timeout=1)
        assert source.yielded == 0


class TestCollectAnswer:
    """Test draining a stream into one answer."""

    @pytest.mark.asyncio
    async def test_concatenates_message_chunks(self):
        source = FakeSource(
            b'data: {"event":"message","answer":"Hel","conversation_id":"c1","message_id":"m1"}\n',
            b": ping\n",
            b'data: {"event":"message","answer":"lo","conversation_id":"c1","message_id":"m1"}\n',
            b'data: {"event":"message_end","task_id":"t1","conversation_id":"c1",'
            b'"message_id":"m1","metadata":{"usage":{"total_tokens":5}}}\n',
        )
        answer = await source.open_stream().collect_answer()

        assert answer.answer == "Hello"
        assert answer.conversation_id == "c1"
        assert answer.message_id == "m1"
        assert answer.task_id == "t1"
        assert answer.metadata == {"usage": {"total_tokens": 5}}
        assert answer.message_count == 3
        assert source.closed.is_set()

    @pytest.mark.asyncio
    async def test_message_replace_resets_answer(self):
        source = FakeSource(
            b'data: {"event":"message","answer":"bad words"}\n',
            b'data: {"event":"message_replace","answer":"[removed]"}\n',
        )
        answer = await source.open_stream().collect_answer()
        assert answer.answer == "[removed]"

    @pytest.mark.asyncio
    async def test_raises_in_band_error(self):
        source = FakeSource(
            b'data: {"event":"message","answer":"a"}\n',
            error=httpx.ReadTimeout("timed out"),
        )
        with pytest.raises(StreamReadError):
            await source.open_stream().collect_answer()
        assert source.closed.is_set()

    @pytest.mark.asyncio
    async def test_raises_server_error_event(self):
        source = FakeSource(
            b'data: {"event":"error","status":400,"code":"invalid_param","message":"nope"}\n',
            hang=True,
        )
        with pytest.raises(ServerEventError, match="nope") as exc_info:
            await source.open_stream().collect_answer()
        assert exc_info.value.status_code == 400
        assert source.closed.is_set()
