"""Per-sender cooldown."""
import time
from typing import Callable, Dict


class SenderCooldown:
    """
    Tracks the last accepted message time per sender.

    A message is accepted when the sender has not had one accepted within
    `seconds`; rejected messages do not reset the window. A zero threshold
    disables the check.
    """

    def __init__(self, seconds: float = 0.0, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._last_seen: Dict[str, float] = {}

    @property
    def enabled(self) -> bool:
        return self.seconds > 0

    def allow(self, sender_id: str) -> bool:
        if not self.enabled:
            return True

        now = self._clock()
        last = self._last_seen.get(sender_id)
        if last is not None and now - last < self.seconds:
            return False

        self._last_seen[sender_id] = now
        self._prune(now)
        return True

    def remaining(self, sender_id: str) -> float:
        last = self._last_seen.get(sender_id)
        if not self.enabled or last is None:
            return 0.0
        return max(0.0, self.seconds - (self._clock() - last))

    def _prune(self, now: float):
        # Expired entries carry no information
        if len(self._last_seen) > 1000:
            self._last_seen = {
                sender: seen for sender, seen in self._last_seen.items()
                if now - seen < self.seconds
            }
