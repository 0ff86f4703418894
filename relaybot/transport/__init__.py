"""
Session transport package.

Concrete transports connect to a chat network, publish received messages onto
the message channel and send replies back.
"""

from relaybot.config import Settings
from relaybot.infra.bus import MessageChannel
from .base import (
    SessionTransport,
    SessionState,
    TransportError,
    TransportNotConnectedError,
    SessionStartError,
)


def create_transport(settings: Settings, channel: MessageChannel) -> SessionTransport:
    """Build the transport selected by the TRANSPORT setting."""
    name = settings.transport.lower()
    if name == "whatsapp":
        from .whatsapp import WhatsAppTransport
        return WhatsAppTransport(settings, channel)
    if name == "discord":
        from .discord import DiscordTransport
        return DiscordTransport(settings, channel)
    raise TransportError(f"Unsupported transport: {settings.transport}")


__all__ = [
    "SessionTransport",
    "SessionState",
    "TransportError",
    "TransportNotConnectedError",
    "SessionStartError",
    "create_transport",
]
