"""
Command routing table.

Exact-match commands answered with fixed replies, checked before a message
goes anywhere near the completion client.
"""
import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)

UNKNOWN_COMMAND_TEXT = "Unknown command. Send {prefix}help for a list of commands."


class CommandTable:
    """Maps normalized command strings to fixed replies."""

    def __init__(self, prefix: str = "/", commands: Optional[Dict[str, str]] = None):
        self.prefix = prefix
        self._commands: Dict[str, str] = {}
        if prefix:
            self.register("ping", "pong")
            self.register("help", "")
        for name, reply in (commands or {}).items():
            self.register(name, reply)

    @property
    def enabled(self) -> bool:
        return bool(self.prefix)

    def register(self, name: str, reply: str):
        """Register a command; the name is given without the prefix."""
        key = self.prefix + name.strip().lower().lstrip(self.prefix)
        self._commands[key] = reply
        logger.debug(f"Registered command {key}")

    def is_command(self, text: str) -> bool:
        """True when normalized text should be routed to this table."""
        return self.enabled and text.startswith(self.prefix)

    def resolve(self, text: str) -> str:
        """Reply for a command string (already normalized)."""
        if text == self.prefix + "help":
            return self.help_text()
        reply = self._commands.get(text)
        if reply is None:
            return UNKNOWN_COMMAND_TEXT.format(prefix=self.prefix)
        return reply

    def help_text(self) -> str:
        names = ", ".join(sorted(self._commands))
        return f"Send any message and I'll answer it with AI. Commands: {names}"
