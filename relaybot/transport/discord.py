"""
Discord Transport Implementation

Runs a discord.py Client as a session transport. Received messages are
converted to IncomingMessage values and published onto the message channel;
replies are sent as Discord message replies.
"""
import asyncio
import logging
from typing import List, Optional
from datetime import datetime, timezone
import discord

from relaybot.config import Settings
from relaybot.infra.bus import MessageChannel
from relaybot.signals.message import IncomingMessage
from .base import SessionTransport, SessionState, SessionStartError


logger = logging.getLogger(__name__)

DISCORD_MESSAGE_LIMIT = 2000


def split_for_discord(text: str, limit: int = DISCORD_MESSAGE_LIMIT) -> List[str]:
    """
    Split text into chunks that fit Discord's message limit, preferring line breaks.

    Only the newline a split is made on is consumed, so blank lines at a chunk
    boundary survive.
    """
    chunks = []
    while len(text) > limit:
        cut = text.rfind("\n", 0, limit)
        if cut <= 0:
            chunks.append(text[:limit])
            text = text[limit:]
        else:
            chunks.append(text[:cut])
            text = text[cut + 1:]
    if text or not chunks:
        chunks.append(text)
    return chunks


def to_incoming_message(message: discord.Message) -> IncomingMessage:
    """Create an IncomingMessage from a discord.py Message object."""
    return IncomingMessage(
        sender_id=str(message.author.id),
        body=message.content or "",
        received_at=message.created_at or datetime.now(timezone.utc),
        source="discord",
        chat_id=str(message.channel.id),
        message_id=str(message.id),
        sender_name=message.author.display_name or message.author.name,
        is_group=message.guild is not None,
    )


class RelayDiscordClient(discord.Client):
    """discord.py Client forwarding gateway events to the transport."""

    def __init__(self, transport: "DiscordTransport"):
        intents = discord.Intents.default()
        intents.message_content = True  # Required for message content access
        intents.guilds = True
        intents.guild_messages = True
        intents.dm_messages = True

        super().__init__(intents=intents)
        self.transport = transport

    async def on_ready(self):
        logger.info(f'🤖 Discord bot logged in as {self.user}!')
        await self.transport.on_ready()

    async def on_message(self, message: discord.Message):
        # Don't process our own or other bots' messages
        if message.author == self.user or message.author.bot:
            return
        self.transport.publish(to_incoming_message(message))

    async def on_disconnect(self):
        await self.transport.on_disconnected("gateway connection closed")

    async def on_resumed(self):
        logger.info("🔄 Discord bot resumed connection")
        await self.transport.on_ready()


class DiscordTransport(SessionTransport):
    """
    Discord session transport.

    The bot token is the authentication material, so there is no
    interactive session-start step.
    """

    name = "discord"

    def __init__(self, settings: Settings, channel: MessageChannel,
                 client: Optional[discord.Client] = None):
        super().__init__(channel)
        self._token = settings.discord_bot_token
        self.client = client or RelayDiscordClient(self)
        self._client_task: Optional[asyncio.Task] = None

    async def _start(self) -> None:
        if not self._token:
            raise SessionStartError("Discord bot token not configured")

        self.state = SessionState.AUTHENTICATING
        try:
            await self.client.login(self._token)
        except discord.LoginFailure as e:
            raise SessionStartError(f"Discord login failed: {e}") from e
        except (discord.HTTPException, OSError, asyncio.TimeoutError) as e:
            raise SessionStartError(f"Could not reach Discord: {e}") from e

        logger.info("🚀 Starting Discord bot...")
        self._client_task = asyncio.create_task(self._connect(), name="discord-gateway")

    async def _connect(self):
        try:
            await self.client.connect(reconnect=True)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ Discord bot error: {e}")
            await self.on_disconnected(str(e))

    async def _send(self, message: IncomingMessage, text: str) -> None:
        channel_id = int(message.reply_target())
        channel = self.client.get_channel(channel_id) or await self.client.fetch_channel(channel_id)

        # Discord rejects whitespace-only messages
        chunks = [chunk for chunk in split_for_discord(text) if chunk.strip()] or [text]
        if message.message_id:
            target = channel.get_partial_message(int(message.message_id))
            await target.reply(chunks[0], mention_author=False)
        else:
            await channel.send(chunks[0])
        for chunk in chunks[1:]:
            await channel.send(chunk)

    async def close(self) -> None:
        """Stop the Discord bot gracefully."""
        self.state = SessionState.CLOSED
        if not self.client.is_closed():
            logger.info("🛑 Stopping Discord bot...")
            await self.client.close()
        if self._client_task and not self._client_task.done():
            self._client_task.cancel()
            try:
                await self._client_task
            except asyncio.CancelledError:
                pass
