"""
Relay package.

Contains the orchestrator that turns inbound chat messages into AI replies,
plus the command table and per-sender cooldown it consults first.
"""

from .orchestrator import RelayOrchestrator, RelayConfig, RelayOutcome
from .commands import CommandTable
from .cooldown import SenderCooldown

__all__ = [
    'RelayOrchestrator',
    'RelayConfig',
    'RelayOutcome',
    'CommandTable',
    'SenderCooldown'
]
