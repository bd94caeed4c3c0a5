"""
Chat-messages API: blocking and streaming call paths.
"""

from __future__ import annotations

import asyncio

import httpx

from ..logging_utils import log_operation
from ..transport import Transport
from .models import CHAT_MESSAGES_PATH, ChatMessageRequest, ChatMessageResponse
from .streaming.stream import ChatMessageStream


class ChatClient:
    """Sends chat messages to a Dify application."""

    def __init__(self, transport: Transport, *, read_chunk_size: int | None = None):
        self.transport = transport
        self.read_chunk_size = read_chunk_size

    @log_operation("chat_messages")
    async def chat_messages(self, request: ChatMessageRequest) -> ChatMessageResponse:
        """
        Create a chat message and wait for the complete answer.

        Raises:
            TransportError: If the request failed or returned a non-2xx status.
            DecodeError: If the response body is not a chat message response.
        """
        request.response_mode = "blocking"
        http_request = self.transport.build_request(
            "POST", CHAT_MESSAGES_PATH, request.to_body()
        )
        return await self.transport.send_json_request(
            http_request, ChatMessageResponse
        )

    @log_operation("chat_messages_stream_raw")
    async def chat_messages_stream_raw(
        self, request: ChatMessageRequest
    ) -> httpx.Response:
        """Open a streaming chat message and return the undecoded response."""
        request.response_mode = "streaming"
        http_request = self.transport.build_request(
            "POST", CHAT_MESSAGES_PATH, request.to_body()
        )
        return await self.transport.send_request(http_request)

    async def chat_messages_stream(
        self,
        request: ChatMessageRequest,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ChatMessageStream:
        """
        Open a streaming chat message and decode it in the background.

        Failures while opening the stream are raised here; anything that goes
        wrong afterwards is delivered as the stream's last message.

        Raises:
            TransportError: If the request failed or returned a non-2xx status.
        """
        response = await self.chat_messages_stream_raw(request)
        return ChatMessageStream.from_response(
            response,
            chunk_size=self.read_chunk_size,
            cancel_event=cancel_event,
        )
