"""
Command-line entry point: stream one chat answer to stdout.

Usage: python -m dify_client.main "your question"
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys

import structlog

from .chat.client import ChatClient
from .chat.models import ChatMessageRequest
from .config import Configuration
from .exceptions import DifyError
from .logging_utils import configure_logging
from .transport import Transport

logger = structlog.get_logger(__name__)


async def stream_answer(
    client: ChatClient,
    request: ChatMessageRequest,
    shutdown_event: asyncio.Event,
) -> int:
    """Print answer chunks as they arrive; return a process exit code."""
    stream = await client.chat_messages_stream(request, cancel_event=shutdown_event)
    async with stream:
        async for message in stream:
            if message.is_error:
                message.raise_for_error()
            data = message.data
            if message.event == "message" and data is not None:
                sys.stdout.write(data.answer)
                sys.stdout.flush()
            elif message.event == "message_end" and data is not None:
                sys.stdout.write("\n")
                logger.info("Answer complete", conversation_id=data.conversation_id)
    return 0


async def main(argv: list[str] | None = None) -> int:
    """Main entry point with graceful shutdown on SIGINT/SIGTERM."""
    args = sys.argv[1:] if argv is None else argv
    if not args:
        sys.stderr.write("usage: python -m dify_client.main QUERY\n")
        return 2

    config = Configuration()
    configure_logging(config.get_logging_config()["level"])

    shutdown_event = asyncio.Event()

    def signal_handler() -> None:
        logger.info("Received shutdown signal, cancelling stream")
        shutdown_event.set()

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler)

    request = ChatMessageRequest(
        query=" ".join(args),
        user=os.getenv("DIFY_USER", "dify-client"),
        conversation_id=os.getenv("DIFY_CONVERSATION_ID") or None,
    )

    async with Transport.from_config(
        config.get_api_config(), config.api_key
    ) as transport:
        client = ChatClient(
            transport,
            read_chunk_size=config.get_streaming_config()["read_chunk_size"],
        )
        try:
            return await stream_answer(client, request, shutdown_event)
        except DifyError as e:
            logger.error("Chat request failed", error_message=str(e))
            return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
