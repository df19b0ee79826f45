"""Tests for retry, caching, rate limiting and error mapping."""

from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import FakeClock
from tonpocket.errors import (
    InvalidAddressError,
    LedgerAPIError,
    RateLimitError,
    TransferRateLimitedError,
    get_user_friendly_error,
)
from tonpocket.utils.cache import CacheKind, ResultCache
from tonpocket.utils.ratelimit import ActionRateLimiter
from tonpocket.utils.retry import RateLimitedFetcher, has_rate_limit_marker, is_rate_limit_error
from tonpocket.utils.security import SecurityEventLog, sanitize_details


class TestRateLimitDetection:
    """Tests for rate-limit classification."""

    def test_markers(self):
        assert has_rate_limit_marker("Ratelimit exceed")
        assert has_rate_limit_marker("HTTP 429")
        assert has_rate_limit_marker("Too Many Requests")
        assert not has_rate_limit_marker("account not found")

    def test_exception_types(self):
        request = httpx.Request("GET", "https://example.com")
        throttled = httpx.HTTPStatusError(
            "throttled", request=request, response=httpx.Response(429, request=request)
        )
        missing = httpx.HTTPStatusError(
            "missing", request=request, response=httpx.Response(404, request=request)
        )

        assert is_rate_limit_error(RateLimitError("slow down"))
        assert is_rate_limit_error(throttled)
        assert not is_rate_limit_error(missing)
        assert is_rate_limit_error(RuntimeError("rate limit reached"))
        assert not is_rate_limit_error(LedgerAPIError("bad request", status_code=400))


class TestRateLimitedFetcher:
    """Tests for bounded backoff."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, fetcher, fake_sleep):
        operation = AsyncMock(return_value={"ok": True})

        assert await fetcher.call(operation) == {"ok": True}
        assert operation.await_count == 1
        fake_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_bound_and_backoff(self, fetcher, fake_sleep):
        """Three attempts with 2s then 4s between them, then give up."""
        operation = AsyncMock(side_effect=RateLimitError("429"))

        with pytest.raises(RateLimitError):
            await fetcher.call(operation, "balance")

        assert operation.await_count == 3
        assert [c.args[0] for c in fake_sleep.await_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_recovers_after_throttling(self, fetcher, fake_sleep):
        operation = AsyncMock(side_effect=[RateLimitError("429"), "1500000000"])

        assert await fetcher.call(operation) == "1500000000"
        assert operation.await_count == 2
        fake_sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_other_errors_propagate_immediately(self, fetcher, fake_sleep):
        operation = AsyncMock(side_effect=LedgerAPIError("not found", status_code=404))

        with pytest.raises(LedgerAPIError):
            await fetcher.call(operation)

        assert operation.await_count == 1
        fake_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_marker_in_string_result(self, fetcher):
        """A 200 body that only says 'Ratelimit exceed' is throttling."""
        operation = AsyncMock(return_value="Ratelimit exceed")

        with pytest.raises(RateLimitError):
            await fetcher.call(operation)

        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_generic_marker_exception_wrapped(self, fake_sleep):
        fetcher = RateLimitedFetcher(max_attempts=2, base_delay=1.0, sleep=fake_sleep)
        operation = AsyncMock(side_effect=RuntimeError("Too many requests"))

        with pytest.raises(RateLimitError):
            await fetcher.call(operation)

        assert operation.await_count == 2
        fake_sleep.assert_awaited_once_with(1.0)


class TestResultCache:
    """Tests for fresh and stale lookups."""

    def test_miss(self, cache):
        assert cache.get(CacheKind.BALANCE, "k") is None
        assert cache.get_fresh(CacheKind.BALANCE, "k") is None
        assert cache.get_stale(CacheKind.BALANCE, "k", "0") == "0"

    def test_fresh_then_stale(self, cache, clock):
        cache.put(CacheKind.BALANCE, "k", "5")

        assert cache.get_fresh(CacheKind.BALANCE, "k") == "5"

        clock.advance(61)

        assert cache.get_fresh(CacheKind.BALANCE, "k") is None
        assert cache.get_stale(CacheKind.BALANCE, "k") == "5"
        assert cache.get(CacheKind.BALANCE, "k").is_fresh is False

    def test_nfts_never_stale(self, cache, clock):
        cache.put(CacheKind.NFTS, "k", ["nft"])
        clock.advance(10**6)

        assert cache.get_fresh(CacheKind.NFTS, "k") == ["nft"]

    def test_custom_ttl(self):
        clock = FakeClock()
        cache = ResultCache(ttls={CacheKind.TRANSACTIONS: 5.0}, clock=clock)
        cache.put(CacheKind.TRANSACTIONS, "k", [])
        clock.advance(6)

        assert cache.get_fresh(CacheKind.TRANSACTIONS, "k") is None

    def test_invalidate(self, cache):
        cache.put(CacheKind.BALANCE, "a", "1")
        cache.put(CacheKind.BALANCE, "b", "2")
        cache.put(CacheKind.JETTONS, "a", [])

        cache.invalidate(CacheKind.BALANCE, "a")
        assert cache.get(CacheKind.BALANCE, "a") is None
        assert len(cache) == 2

        cache.invalidate(CacheKind.BALANCE)
        assert len(cache) == 1

        cache.clear()
        assert len(cache) == 0


class TestActionRateLimiter:
    """Tests for the sliding window."""

    def test_window(self):
        clock = FakeClock()
        limiter = ActionRateLimiter(window_seconds=60, max_requests=2, clock=clock)

        assert limiter.is_allowed("send_a")
        assert limiter.is_allowed("send_a")
        assert not limiter.is_allowed("send_a")
        assert limiter.is_allowed("send_b")
        assert limiter.time_until_next("send_a") == 60

        clock.advance(30)
        assert limiter.time_until_next("send_a") == 30

        clock.advance(31)
        assert limiter.is_allowed("send_a")

    def test_clear(self):
        limiter = ActionRateLimiter(window_seconds=60, max_requests=1, clock=FakeClock())
        limiter.is_allowed("k")
        limiter.clear("k")

        assert limiter.is_allowed("k")


class TestSecurityEventLog:
    """Tests for redaction."""

    def test_redacts_and_truncates(self):
        details = sanitize_details(
            {
                "mnemonic": "word " * 24,
                "apiKey": "abc",
                "memo": "x" * 150,
                "nested": {"privateKey": "00"},
                "amount": "1.5",
            }
        )

        assert details["mnemonic"] == "[REDACTED]"
        assert details["apiKey"] == "[REDACTED]"
        assert details["memo"] == "x" * 50 + "..."
        assert details["nested"]["privateKey"] == "[REDACTED]"
        assert details["amount"] == "1.5"

    def test_bounded_tail(self):
        log = SecurityEventLog(max_events=3)
        for i in range(5):
            log.log("transfer_initiated", index=i)

        recent = log.recent(10)
        assert [e.details["index"] for e in recent] == [2, 3, 4]
        assert log.recent(0) == []


class TestUserFriendlyError:
    """Tests for error mapping."""

    def test_wallet_error(self):
        details = get_user_friendly_error(InvalidAddressError("bad"))

        assert details.code == "INVALID_ADDRESS"
        assert details.message == "bad"
        assert details.recoverable is True

    def test_transfer_rate_limited(self):
        details = get_user_friendly_error(TransferRateLimitedError(12))

        assert details.code == "RATE_LIMIT"
        assert "12 seconds" in details.user_message

    @pytest.mark.parametrize(
        "message,code",
        [
            ("HTTP 429 Too Many Requests", "RATE_LIMIT"),
            ("Request timed out", "TIMEOUT"),
            ("Network unreachable", "NETWORK_ERROR"),
            ("Insufficient funds", "INSUFFICIENT_BALANCE"),
            ("something odd", "UNKNOWN_ERROR"),
        ],
    )
    def test_message_classification(self, message, code):
        assert get_user_friendly_error(RuntimeError(message)).code == code
