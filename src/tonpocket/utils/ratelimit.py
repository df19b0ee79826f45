"""Sliding-window limiter for the wallet's own sensitive actions.

Independent of the remote API throttling: this caps how often the wallet
itself may trigger outgoing transfers for a given address.
"""

import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class ActionRateLimiter:
    """Per-key sliding window counter.

    Example:
        limiter = ActionRateLimiter(window_seconds=60, max_requests=10)
        key = f"send_{address}"
        if not limiter.is_allowed(key):
            wait = limiter.time_until_next(key)
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        max_requests: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the limiter.

        Args:
            window_seconds: Length of the sliding window
            max_requests: Actions allowed per key within the window
            clock: Monotonic time source (tests inject a fake)
        """
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._requests: dict[str, list[float]] = {}

    def _recent(self, key: str, now: float) -> list[float]:
        return [ts for ts in self._requests.get(key, []) if now - ts < self.window_seconds]

    def is_allowed(self, key: str) -> bool:
        """Record an action for ``key`` if the window has room.

        Returns:
            True if the action is allowed (and was counted)
        """
        now = self._clock()
        recent = self._recent(key, now)

        if len(recent) >= self.max_requests:
            self._requests[key] = recent
            logger.warning(f"Action limit reached for {key}: {len(recent)}/{self.max_requests}")
            return False

        recent.append(now)
        self._requests[key] = recent
        return True

    def time_until_next(self, key: str) -> float:
        """Seconds until ``key`` may act again (0 if allowed now)."""
        now = self._clock()
        recent = self._recent(key, now)
        if len(recent) < self.max_requests:
            return 0.0
        return self.window_seconds - (now - recent[0])

    def clear(self, key: str) -> None:
        """Reset the window for one key."""
        self._requests.pop(key, None)

    def clear_all(self) -> None:
        """Reset every window (useful for testing)."""
        self._requests.clear()
