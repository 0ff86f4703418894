"""
Shared test collaborators: an in-memory session transport and a scripted
completion client.
"""

import asyncio
import os
from typing import List, Optional, Tuple

import pytest

# Settings need a credential before anything reads them
os.environ.setdefault('LLM_API_KEY', 'test_key')

from relaybot.infra.bus import MessageChannel
from relaybot.signals.message import IncomingMessage
from relaybot.transport.base import SessionTransport, TransportError


class FakeTransport(SessionTransport):
    """Session transport that records replies instead of sending them."""

    name = "fake"

    def __init__(self, channel: Optional[MessageChannel] = None, fail_on: Tuple[int, ...] = ()):
        super().__init__(channel or MessageChannel())
        self.sent: List[Tuple[str, str]] = []
        self.fail_on = fail_on
        self.attempts = 0
        self.closed = False

    async def _start(self):
        await self.on_ready()

    async def _send(self, message: IncomingMessage, text: str):
        self.attempts += 1
        if self.attempts in self.fail_on:
            raise TransportError(f"send #{self.attempts} failed")
        self.sent.append((message.reply_target(), text))

    async def close(self):
        self.closed = True

    @property
    def texts(self) -> List[str]:
        return [text for _, text in self.sent]


class FakeCompletionClient:
    """Completion client answering from a script of results or exceptions."""

    def __init__(self, *results, delay: float = 0.0):
        self.results = list(results) or ["ok"]
        self.delay = delay
        self.prompts: List[str] = []
        self.calls: List[dict] = []

    async def complete(self, prompt: str, system: Optional[str] = None, model: Optional[str] = None) -> str:
        self.prompts.append(prompt)
        self.calls.append({"prompt": prompt, "system": system, "model": model})
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return result

    def get_stats(self):
        return {"total_requests": len(self.prompts), "failed_requests": 0}


def make_message(body: str, sender_id: str = "A", **kwargs) -> IncomingMessage:
    return IncomingMessage(sender_id=sender_id, body=body, **kwargs)


@pytest.fixture
async def transport():
    fake = FakeTransport()
    await fake.initialize()
    return fake
