"""
Background decoding session for a streamed chat response.

A ChatMessageStream owns the response body for its whole lifetime. A single
asyncio task reads lines, decodes frames and hands each message to the
consumer through a one-slot queue, so the reader never runs more than one
message ahead of the consumer. Every exit path (end of input, read failure,
malformed frame, cancellation) releases the response and closes the channel.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import AsyncIterator, Awaitable, Callable

import httpx

from ...exceptions import StreamReadError
from ...logging_utils import ContextualLogger, DifyErrorHandler
from .models import (
    ChatAnswer,
    ChatStreamMessage,
    MessageEndEvent,
    MessageEvent,
    MessageReplaceEvent,
    StreamEventType,
)
from .parser import ChatStreamParser, LineReader

_stream_ids = itertools.count(1)


class ChatMessageStream:
    """
    Async iterator over the messages of one streamed chat response.

    Use as ``async with`` (or call ``aclose()``) so an abandoned stream is
    released. Errors that happen after the stream was opened arrive as the
    last message, with ``error`` set and ``event == "error"``.
    """

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        close: Callable[[], Awaitable[None]],
        *,
        cancel_event: asyncio.Event | None = None,
        parser: ChatStreamParser | None = None,
    ):
        stream_id = next(_stream_ids)
        self._log = ContextualLogger({"stream_id": stream_id}, name=__name__)
        self._reader = LineReader(chunks)
        self._close_source = close
        self._parser = parser or ChatStreamParser(
            ContextualLogger(
                {"stream_id": stream_id}, name=ChatStreamParser.__module__
            )
        )
        self._queue: asyncio.Queue[ChatStreamMessage] = asyncio.Queue(maxsize=1)
        self._closed = asyncio.Event()
        self._cancel_requested = asyncio.Event()
        self._external_cancel = cancel_event
        self._releasing = False
        self._watcher: asyncio.Task[None] | None = None

        self._task = asyncio.create_task(self._run())
        if cancel_event is not None:
            self._watcher = asyncio.create_task(self._watch(cancel_event))

    @classmethod
    def from_response(
        cls,
        response: httpx.Response,
        *,
        chunk_size: int | None = None,
        **kwargs,
    ) -> ChatMessageStream:
        """Start a session that owns an open streamed httpx response."""
        return cls(response.aiter_bytes(chunk_size), response.aclose, **kwargs)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def stats(self) -> dict[str, int]:
        return self._parser.get_stats()

    def _cancelled(self) -> bool:
        if self._cancel_requested.is_set():
            return True
        return self._external_cancel is not None and self._external_cancel.is_set()

    def _request_cancel(self) -> None:
        self._cancel_requested.set()
        if not self._releasing and not self._task.done():
            self._task.cancel()

    async def _watch(self, cancel_event: asyncio.Event) -> None:
        await cancel_event.wait()
        self._log.debug("Cancellation signalled")
        self._request_cancel()

    async def _run(self) -> None:
        self._log.debug("Stream session started")
        try:
            while True:
                if self._cancelled():
                    self._log.info("Stream cancelled")
                    return

                try:
                    line = await self._reader.readline()
                except Exception as e:
                    await self._fail_read(e)
                    return

                if not line:
                    if self._reader.discarded_bytes:
                        self._log.debug(
                            "Dropped unterminated trailing line",
                            discarded_bytes=self._reader.discarded_bytes,
                        )
                    self._log.debug("Stream reached end of input")
                    return

                message = self._parser.parse_line(line)
                if message is None:
                    continue

                await self._queue.put(message)

                if message.error is not None:
                    self._log.error(
                        "Stream ended by undecodable frame",
                        error_category=DifyErrorHandler.classify_error(
                            message.error
                        ),
                        error_message=str(message.error),
                    )
                    return
        except asyncio.CancelledError:
            self._log.info("Stream cancelled")
            raise
        finally:
            await self._release()

    async def _fail_read(self, cause: Exception) -> None:
        error = StreamReadError(f"error reading line: {cause}")
        error.__cause__ = cause
        self._log.warning(
            "Stream read failed",
            error_type=type(cause).__name__,
            error_category=DifyErrorHandler.classify_error(cause),
            error_message=str(cause),
        )
        await self._queue.put(
            ChatStreamMessage(event=StreamEventType.ERROR.value, error=error)
        )

    async def _release(self) -> None:
        self._releasing = True
        try:
            await self._reader.aclose()
            await self._close_source()
        except Exception as e:
            self._log.warning(
                "Error closing response stream",
                error_type=type(e).__name__,
                error_message=str(e),
            )
        finally:
            self._closed.set()
            if self._watcher is not None and not self._watcher.done():
                self._watcher.cancel()
            self._log.debug("Stream session closed", **self._parser.get_stats())

    def __aiter__(self) -> ChatMessageStream:
        return self

    async def __anext__(self) -> ChatStreamMessage:
        if self._cancelled():
            raise StopAsyncIteration
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self._closed.is_set():
            raise StopAsyncIteration

        getter = asyncio.ensure_future(self._queue.get())
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({getter, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed.cancel()
            if not getter.done():
                getter.cancel()

        if getter.done() and not getter.cancelled():
            return getter.result()
        # The final message may land together with the close signal
        if not self._queue.empty() and not self._cancelled():
            return self._queue.get_nowait()
        raise StopAsyncIteration

    async def aclose(self) -> None:
        """Stop the session and wait until the response is released."""
        self._request_cancel()
        await asyncio.wait({self._task})
        if not self._closed.is_set():
            # Cancelled before its first step, so _run never reached its finally
            await self._release()
        if self._watcher is not None:
            await asyncio.wait({self._watcher})

    async def __aenter__(self) -> ChatMessageStream:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def collect_answer(self) -> ChatAnswer:
        """
        Drain the stream into a single answer.

        Raises:
            StreamReadError: If the stream broke off.
            DecodeError: If a frame could not be decoded.
            ServerEventError: If the server relayed an error event.
        """
        result = ChatAnswer()
        try:
            async for message in self:
                message.raise_for_error()
                result.message_count += 1
                data = message.data

                if isinstance(data, MessageReplaceEvent):
                    result.answer = data.answer
                elif isinstance(data, MessageEvent):
                    result.answer += data.answer
                elif isinstance(data, MessageEndEvent):
                    result.metadata = data.metadata

                for attr in ("conversation_id", "message_id", "task_id"):
                    value = getattr(data, attr, "")
                    if value:
                        setattr(result, attr, value)
        finally:
            await self.aclose()
        return result
