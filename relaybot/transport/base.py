"""
Session Transport - Abstraction Layer for Chat Sessions
=======================================================

A session transport owns the authenticated connection to a chat network. It
publishes every received message onto the message channel and exposes a
`reply(message, text)` operation. Lifecycle events (session start with an
authentication code, ready, disconnected) go through overridable hooks.

USAGE:
    channel = MessageChannel()
    await channel.start()
    transport = WhatsAppTransport(settings, channel)
    await transport.initialize()
    ...
    await transport.reply(message, "Hello!")
    await transport.close()
"""

import io
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import qrcode

from relaybot.infra.bus import MessageChannel
from relaybot.signals.message import IncomingMessage

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Lifecycle states of a chat session."""
    CREATED = "created"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


class TransportError(Exception):
    """Base exception for session transport errors."""
    pass


class TransportNotConnectedError(TransportError):
    """Raised when replying while the session is not ready."""
    pass


class SessionStartError(TransportError):
    """Raised when the session cannot be established."""
    pass


def render_qr(code: str) -> str:
    """Render an authentication code as a small terminal QR code."""
    qr = qrcode.QRCode(border=1)
    qr.add_data(code)
    qr.make(fit=True)
    out = io.StringIO()
    qr.print_ascii(out=out, invert=True)
    return out.getvalue()


class SessionTransport(ABC):
    """
    Abstract base class for chat session transports.
    Implement this interface to add new chat backends.
    """

    name = "transport"

    def __init__(self, channel: MessageChannel):
        self.channel = channel
        self.state = SessionState.CREATED
        self._initialized = False

        self.stats = {
            'messages_received': 0,
            'messages_published': 0,
            'replies_sent': 0,
            'reply_failures': 0,
            'connection_time': None,
            'last_activity': None
        }

    async def initialize(self) -> None:
        """Start session establishment. Must be called exactly once."""
        if self._initialized:
            raise TransportError(f"{self.name} transport already initialized")
        self._initialized = True
        await self._start()

    @abstractmethod
    async def _start(self) -> None:
        """Backend-specific session establishment."""
        ...

    async def reply(self, message: IncomingMessage, text: str) -> None:
        """
        Send text back to the chat the message came from.

        Raises:
            TransportNotConnectedError: if the session is not ready
            TransportError: if the backend fails to send
        """
        if self.state != SessionState.READY:
            self.stats['reply_failures'] += 1
            raise TransportNotConnectedError(
                f"{self.name} session is {self.state.value}, cannot reply"
            )
        try:
            await self._send(message, text)
        except TransportError:
            self.stats['reply_failures'] += 1
            raise
        except Exception as e:
            self.stats['reply_failures'] += 1
            raise TransportError(f"{self.name} reply failed: {e}") from e

        self.stats['replies_sent'] += 1
        self.stats['last_activity'] = datetime.now(timezone.utc)

    @abstractmethod
    async def _send(self, message: IncomingMessage, text: str) -> None:
        """Backend-specific send."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the session."""
        ...

    def publish(self, message: IncomingMessage) -> bool:
        """Push a received message onto the channel."""
        self.stats['messages_received'] += 1
        self.stats['last_activity'] = datetime.now(timezone.utc)
        published = self.channel.publish(message)
        if published:
            self.stats['messages_published'] += 1
        return published

    # Lifecycle hooks

    async def on_session_start(self, code: str) -> None:
        """Called when authentication material is available."""
        self.state = SessionState.AUTHENTICATING
        print(render_qr(code))
        print(f"Scan this QR code with {self.name.title()}")
        logger.info(f"🔑 {self.name} session waiting for authentication")

    async def on_ready(self) -> None:
        """Called when the session becomes usable."""
        self.state = SessionState.READY
        self.stats['connection_time'] = datetime.now(timezone.utc)
        logger.info(f"✅ {self.name} bot is ready!")

    async def on_disconnected(self, reason: Optional[str] = None) -> None:
        """Called when the session drops."""
        if self.state != SessionState.CLOSED:
            self.state = SessionState.DISCONNECTED
        logger.warning(f"🔌 {self.name} session disconnected: {reason or 'unknown reason'}")

    def get_stats(self) -> Dict[str, Any]:
        """Get transport statistics."""
        stats = self.stats.copy()
        stats['transport'] = self.name
        stats['state'] = self.state.value
        for key in ('connection_time', 'last_activity'):
            if stats[key] is not None:
                stats[key] = stats[key].isoformat()
        return stats
