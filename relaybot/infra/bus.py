"""
Message channel between the session transport and the relay orchestrator.
The transport publishes IncomingMessage values; the orchestrator consumes them.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from relaybot.signals.message import IncomingMessage

logger = logging.getLogger(__name__)

# Queue sentinel that wakes the consumer on shutdown
_SHUTDOWN = object()


class ChannelError(Exception):
    """Message channel operation error."""
    pass


class MessageChannel:
    """
    Async message channel backed by asyncio.Queue.

    Publishing never blocks: when the queue is full or the channel is stopped
    the message is dropped and logged.
    """

    def __init__(self, max_queue_size: int = 1000):
        self.max_queue_size = max_queue_size
        self.message_queue: Optional[asyncio.Queue] = None
        self.running = False
        self.published_count = 0
        self.dropped_count = 0

        logger.info(f"MessageChannel initialized with max_queue_size={max_queue_size}")

    async def start(self):
        """Start the channel."""
        if self.running:
            return

        # One extra slot so the shutdown sentinel always fits
        self.message_queue = asyncio.Queue(maxsize=self.max_queue_size + 1)
        self.running = True

        logger.info("MessageChannel started")

    async def stop(self):
        """Stop the channel and wake up the consumer."""
        if not self.running:
            return

        self.running = False
        self.message_queue.put_nowait(_SHUTDOWN)

        logger.info("MessageChannel stopped")

    def publish(self, message: IncomingMessage) -> bool:
        """
        Publish a message to the channel.

        Args:
            message: Message received by the transport

        Returns:
            bool: True if message was queued successfully
        """
        if not self.running or self.message_queue is None:
            logger.error("MessageChannel not running, cannot publish message")
            self.dropped_count += 1
            return False

        if self.message_queue.qsize() >= self.max_queue_size:
            logger.error(f"MessageChannel queue full, dropping message {message.key()}")
            self.dropped_count += 1
            return False

        self.message_queue.put_nowait(message)
        self.published_count += 1
        logger.debug(f"Published message {message.key()} from {message.sender_id}")
        return True

    async def get(self) -> Optional[IncomingMessage]:
        """
        Wait for the next message.

        Returns:
            The next message, or None once the channel has been stopped.
        """
        if self.message_queue is None:
            raise ChannelError("MessageChannel not started")

        item = await self.message_queue.get()
        if item is _SHUTDOWN:
            return None
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> IncomingMessage:
        message = await self.get()
        if message is None:
            raise StopAsyncIteration
        return message

    def get_stats(self) -> Dict[str, Any]:
        """Get channel statistics."""
        return {
            "running": self.running,
            "published_count": self.published_count,
            "dropped_count": self.dropped_count,
            "queue_size": self.message_queue.qsize() if self.message_queue else 0,
            "max_queue_size": self.max_queue_size,
        }
