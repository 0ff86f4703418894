"""
Relay Orchestrator

Connects the session transport to the completion client. For every inbound
message it applies the filters, sends an immediate acknowledgment, asks the
completion client for a reply and relays either the generated text or a fixed
fallback. Failures are handled inside the reply cycle and never escape the
handler.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Set

from relaybot.config import Settings
from relaybot.infra.bus import MessageChannel
from relaybot.infra.retry import RetryConfig, RetryHandler, classify_error
from relaybot.signals.message import IncomingMessage
from .commands import CommandTable
from .cooldown import SenderCooldown


logger = logging.getLogger(__name__)

PROMPT_LOG_CHARS = 50


class RelayOutcome(str, Enum):
    """How a single reply cycle ended."""
    IGNORED = "ignored"
    COMPLETED = "completed"
    FALLBACK = "fallback"
    COMMAND = "command"
    COOLDOWN = "cooldown"
    ABANDONED = "abandoned"


@dataclass
class RelayConfig:
    """Configuration for the relay orchestrator."""
    ack_text: str = "AI is Thinking...."
    fallback_text: str = "Sorry, I couldn't process that request."
    cooldown_text: str = "You're sending messages too quickly. Please wait a moment."
    command_prefix: str = "/"
    ignore_groups: bool = False
    cooldown_seconds: float = 0.0
    serialize_per_sender: bool = False
    system_prompt: Optional[str] = None
    model: Optional[str] = None
    max_attempts: int = 1
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    shutdown_timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RelayConfig":
        return cls(
            ack_text=settings.relay_ack_text,
            fallback_text=settings.relay_fallback_text,
            cooldown_text=settings.relay_cooldown_text,
            command_prefix=settings.relay_command_prefix,
            ignore_groups=settings.relay_ignore_groups,
            cooldown_seconds=settings.relay_sender_cooldown_seconds,
            serialize_per_sender=settings.relay_serialize_per_sender,
            system_prompt=settings.llm_system_prompt,
            model=settings.llm_model,
            max_attempts=settings.llm_max_attempts,
            retry_base_delay=settings.llm_retry_base_delay,
            retry_max_delay=settings.llm_retry_max_delay,
        )


def truncate(text: str, limit: int = PROMPT_LOG_CHARS) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


class ReplyCycle:
    """Bookkeeping for one message's outbound replies."""

    def __init__(self, message: IncomingMessage):
        self.message = message
        self.replies_attempted = 0
        self.result_attempted = False


class RelayOrchestrator:
    """
    Consumes inbound messages and relays AI replies.

    The transport and completion client are injected; the orchestrator never
    reaches for process-wide state.
    """

    def __init__(self, transport, completion_client, config: Optional[RelayConfig] = None,
                 channel: Optional[MessageChannel] = None,
                 commands: Optional[CommandTable] = None,
                 cooldown: Optional[SenderCooldown] = None):
        self.transport = transport
        self.completion_client = completion_client
        self.config = config or RelayConfig()
        self.channel = channel
        self.commands = commands or CommandTable(prefix=self.config.command_prefix)
        self.cooldown = cooldown or SenderCooldown(self.config.cooldown_seconds)
        self.retry = RetryHandler(RetryConfig(
            max_attempts=self.config.max_attempts,
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay,
        ))

        self._consumer_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self._sender_locks: Dict[str, asyncio.Lock] = {}
        self._sender_pending: Dict[str, int] = {}

        # Statistics tracking
        self.stats = {
            'messages_received': 0,
            'acks_sent': 0,
            'outcomes': {outcome.value: 0 for outcome in RelayOutcome},
            'transport_errors': 0,
            'completion_errors': 0,
            'handler_errors': 0,
            'last_activity': None
        }

    # Reply cycle

    async def handle(self, message: IncomingMessage) -> RelayOutcome:
        """
        Run one reply cycle for an inbound message.

        Never raises: every failure ends in a logged outcome.
        """
        self.stats['messages_received'] += 1
        self.stats['last_activity'] = datetime.now(timezone.utc)
        cycle = ReplyCycle(message)

        try:
            outcome = await self._handle(cycle)
        except Exception as e:
            self.stats['handler_errors'] += 1
            logger.error(
                f"❌ Unexpected error handling message {message.key()} from {message.sender_id}: {e}",
                exc_info=True
            )
            outcome = RelayOutcome.FALLBACK
            if not cycle.result_attempted:
                cycle.result_attempted = True
                if not await self._safe_reply(cycle, self.config.fallback_text):
                    outcome = RelayOutcome.ABANDONED

        self.stats['outcomes'][outcome.value] += 1
        return outcome

    async def _handle(self, cycle: ReplyCycle) -> RelayOutcome:
        message = cycle.message

        if message.is_blank():
            logger.debug(f"🔍 Ignoring empty message from {message.sender_id}")
            return RelayOutcome.IGNORED

        if self.config.ignore_groups and message.is_group:
            logger.debug(f"🔍 Ignoring group message from {message.sender_id}")
            return RelayOutcome.IGNORED

        prompt = message.normalized_body()
        logger.info(f"📨 Message from {message.sender_id}: '{truncate(prompt)}'")

        if self.commands.is_command(prompt):
            cycle.result_attempted = True
            sent = await self._safe_reply(cycle, self.commands.resolve(prompt))
            return RelayOutcome.COMMAND if sent else RelayOutcome.ABANDONED

        if not self.cooldown.allow(message.sender_id):
            logger.info(
                f"⏱️ Sender {message.sender_id} in cooldown "
                f"({self.cooldown.remaining(message.sender_id):.1f}s left)"
            )
            cycle.result_attempted = True
            sent = await self._safe_reply(cycle, self.config.cooldown_text)
            return RelayOutcome.COOLDOWN if sent else RelayOutcome.ABANDONED

        # Step 1: acknowledgment; failure is not fatal
        if await self._safe_reply(cycle, self.config.ack_text):
            self.stats['acks_sent'] += 1

        # Step 2: completion
        try:
            text = await self.retry.call(
                self.completion_client.complete,
                prompt,
                system=self.config.system_prompt,
                model=self.config.model,
            )
        except Exception as e:
            self.stats['completion_errors'] += 1
            logger.error(
                f"❌ AI Error for sender {message.sender_id} "
                f"(prompt='{truncate(prompt)}', kind={classify_error(e).value}): {e}"
            )
            cycle.result_attempted = True
            sent = await self._safe_reply(cycle, self.config.fallback_text)
            return RelayOutcome.FALLBACK if sent else RelayOutcome.ABANDONED

        cycle.result_attempted = True
        if not await self._safe_reply(cycle, text):
            return RelayOutcome.ABANDONED

        logger.info(f"✅ Replied to {message.sender_id} ({len(text)} chars)")
        return RelayOutcome.COMPLETED

    async def _safe_reply(self, cycle: ReplyCycle, text: str) -> bool:
        """Send a reply, logging instead of raising on failure."""
        cycle.replies_attempted += 1
        try:
            await self.transport.reply(cycle.message, text)
            return True
        except Exception as e:
            self.stats['transport_errors'] += 1
            logger.error(f"❌ Failed to reply to {cycle.message.sender_id}: {e}")
            return False

    # Consumer loop

    async def start(self):
        """Start consuming the message channel."""
        if self.channel is None:
            raise RuntimeError("RelayOrchestrator has no message channel")
        if self._consumer_task and not self._consumer_task.done():
            return
        self._consumer_task = asyncio.create_task(self.run(), name="relay-consumer")
        logger.info("✅ Relay orchestrator started")

    async def run(self):
        """Consume messages until the channel stops, one task per message."""
        async for message in self.channel:
            task = asyncio.create_task(self._dispatch(message))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
        logger.info("Relay consumer loop finished")

    async def _dispatch(self, message: IncomingMessage):
        if not self.config.serialize_per_sender:
            await self.handle(message)
            return

        sender = message.sender_id
        lock = self._sender_locks.setdefault(sender, asyncio.Lock())
        self._sender_pending[sender] = self._sender_pending.get(sender, 0) + 1
        try:
            async with lock:
                await self.handle(message)
        finally:
            # A lock is dropped only once no handler for the sender holds or awaits it
            self._sender_pending[sender] -= 1
            if self._sender_pending[sender] == 0:
                del self._sender_pending[sender]
                self._sender_locks.pop(sender, None)

    async def stop(self):
        """Stop consuming and wait for in-flight reply cycles."""
        if self._consumer_task and not self._consumer_task.done():
            try:
                await asyncio.wait_for(self._consumer_task, timeout=self.config.shutdown_timeout)
            except asyncio.TimeoutError:
                logger.warning("Relay consumer did not finish in time")

        if self._inflight:
            pending = set(self._inflight)
            logger.info(f"Waiting for {len(pending)} in-flight replies...")
            done, still_pending = await asyncio.wait(pending, timeout=self.config.shutdown_timeout)
            for task in still_pending:
                task.cancel()
            if still_pending:
                await asyncio.gather(*still_pending, return_exceptions=True)
                logger.warning(f"Cancelled {len(still_pending)} unfinished replies")

        logger.info("🛑 Relay orchestrator stopped")

    def get_stats(self) -> Dict[str, Any]:
        """Get orchestrator statistics."""
        stats = self.stats.copy()
        stats['outcomes'] = dict(self.stats['outcomes'])
        stats['inflight'] = len(self._inflight)
        stats['running'] = self._consumer_task is not None and not self._consumer_task.done()
        stats['retry'] = self.retry.get_metrics()
        if stats['last_activity'] is not None:
            stats['last_activity'] = stats['last_activity'].isoformat()
        return stats
