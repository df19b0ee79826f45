"""Rate-limit aware call wrapper for remote ledger requests.

Only throttling is retried. Any other failure propagates on the first
attempt so the retry budget stays available for transient 429s.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from tonpocket.errors import RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# The ledger API sometimes reports throttling as a plain string in a 200 body
RATE_LIMIT_MARKERS = ("429", "ratelimit", "rate limit", "too many requests")


def has_rate_limit_marker(text: str) -> bool:
    """Check if a message or body contains a rate-limit marker."""
    lowered = text.lower()
    return any(marker in lowered for marker in RATE_LIMIT_MARKERS)


def is_rate_limit_error(error: BaseException) -> bool:
    """Classify an exception as a rate-limit condition."""
    if isinstance(error, RateLimitError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code == 429
    return has_rate_limit_marker(str(error))


class RateLimitedFetcher:
    """Runs remote calls with bounded exponential backoff on throttling.

    Usage:
        fetcher = RateLimitedFetcher(max_attempts=3, base_delay=2.0)
        balance = await fetcher.call(lambda: client.get_balance(address))
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        """Initialize the fetcher.

        Args:
            max_attempts: Total attempts including the first one
            base_delay: Delay before the first retry, doubled each time
            sleep: Awaitable sleep function (tests inject a fake)
        """
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self._sleep = sleep or asyncio.sleep

    async def call(self, operation: Callable[[], Awaitable[T]], label: str = "request") -> T:
        """Run ``operation`` and retry it while it is rate limited.

        Args:
            operation: Zero-argument callable returning an awaitable
            label: Short description for log lines

        Returns:
            Whatever the operation returns

        Raises:
            RateLimitError: when every attempt was throttled
            Exception: any non rate-limit failure, unchanged
        """
        last_error: Optional[BaseException] = None

        for attempt in range(self.max_attempts):
            try:
                result = await operation()
                if isinstance(result, str) and has_rate_limit_marker(result):
                    raise RateLimitError(f"Rate limit marker in response: {result[:80]}")
                return result
            except Exception as e:
                if not is_rate_limit_error(e):
                    raise

                last_error = e
                if attempt < self.max_attempts - 1:
                    delay = self.base_delay * (2**attempt)
                    logger.warning(
                        f"Rate limit hit for {label}, retrying in {delay:.1f}s "
                        f"(attempt {attempt + 1}/{self.max_attempts})"
                    )
                    await self._sleep(delay)

        logger.warning(f"Rate limit persisted for {label} after {self.max_attempts} attempts")
        if isinstance(last_error, RateLimitError):
            raise last_error
        raise RateLimitError(f"Rate limit exceeded for {label}: {last_error}")
