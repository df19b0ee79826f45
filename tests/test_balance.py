"""Tests for native balance and jetton holdings."""

from decimal import Decimal

import pytest

from conftest import ZERO_FRIENDLY, ZERO_RAW
from tonpocket.errors import LedgerAPIError, NetworkError, RateLimitError
from tonpocket.services.balance_service import (
    BalanceService,
    address_forms,
    parse_balance,
    parse_jetton_row,
)
from tonpocket.utils.cache import CacheKind


def jetton_row(address: str, balance: str, symbol: str = "USDT", decimals=6, **extra) -> dict:
    jetton = {"address": address, "symbol": symbol, "name": f"{symbol} token", "decimals": decimals}
    jetton.update(extra)
    return {"balance": balance, "jetton": jetton, "wallet_address": {"address": "0:" + "a" * 64}}


@pytest.fixture
def service(toncenter, tonapi, fetcher, cache, settings) -> BalanceService:
    return BalanceService(toncenter, tonapi, fetcher, cache, settings)


class TestParseBalance:
    """Tests for balance payload extraction."""

    @pytest.mark.parametrize(
        "payload,expected",
        [
            ("1500000000", "1500000000"),
            (" 42 ", "42"),
            (7, "7"),
            ({"balance": "1500000000"}, "1500000000"),
            ({"result": "0"}, "0"),
        ],
    )
    def test_accepted_shapes(self, payload, expected):
        assert parse_balance(payload) == expected

    @pytest.mark.parametrize("payload", ["Ratelimit exceed", -1, True, None, {}, "1.5"])
    def test_rejected_shapes(self, payload):
        with pytest.raises(LedgerAPIError):
            parse_balance(payload)

    def test_address_forms(self):
        assert address_forms(ZERO_FRIENDLY) == [ZERO_RAW, ZERO_FRIENDLY]
        assert address_forms(" unknown ") == ["unknown"]


class TestGetBalance:
    """Tests for BalanceService.get_balance."""

    @pytest.mark.asyncio
    async def test_balance_object(self, service, toncenter):
        """A {"balance": ...} payload yields the nanoton string."""
        toncenter.get_balance.return_value = {"balance": "1500000000"}

        balance = await service.get_balance(ZERO_FRIENDLY)

        assert balance == "1500000000"
        toncenter.get_balance.assert_awaited_once_with(ZERO_RAW)

    @pytest.mark.asyncio
    async def test_fresh_cache_hit(self, service, toncenter):
        toncenter.get_balance.return_value = "5"

        await service.get_balance(ZERO_RAW)
        await service.get_balance(ZERO_FRIENDLY)

        assert toncenter.get_balance.await_count == 1

    @pytest.mark.asyncio
    async def test_force_bypasses_cache(self, service, toncenter):
        toncenter.get_balance.return_value = "5"

        await service.get_balance(ZERO_RAW)
        await service.get_balance(ZERO_RAW, force=True)

        assert toncenter.get_balance.await_count == 2

    @pytest.mark.asyncio
    async def test_stale_fallback_after_failure(self, service, toncenter, clock):
        toncenter.get_balance.return_value = "1500000000"
        await service.get_balance(ZERO_RAW)

        clock.advance(120)
        toncenter.get_balance.side_effect = NetworkError("offline")

        assert await service.get_balance(ZERO_RAW) == "1500000000"

    @pytest.mark.asyncio
    async def test_zero_without_history(self, service, toncenter):
        toncenter.get_balance.side_effect = NetworkError("offline")

        assert await service.get_balance(ZERO_RAW) == "0"

    @pytest.mark.asyncio
    async def test_persistent_rate_limit(self, service, toncenter, fake_sleep):
        toncenter.get_balance.side_effect = RateLimitError("429")

        assert await service.get_balance(ZERO_RAW) == "0"
        assert toncenter.get_balance.await_count == 3
        assert fake_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_textual_rate_limit_never_becomes_balance(self, service, toncenter):
        toncenter.get_balance.return_value = "Ratelimit exceed"

        assert await service.get_balance(ZERO_RAW) == "0"
        assert service.cache.get(CacheKind.BALANCE, ZERO_RAW) is None

    @pytest.mark.asyncio
    async def test_alternate_form_on_api_error(self, service, toncenter):
        """A rejected raw form is retried in user-friendly form."""
        toncenter.get_balance.side_effect = [
            LedgerAPIError("invalid address", status_code=416),
            "250",
        ]

        assert await service.get_balance(ZERO_FRIENDLY) == "250"
        assert [c.args[0] for c in toncenter.get_balance.await_args_list] == [
            ZERO_RAW,
            ZERO_FRIENDLY,
        ]


class TestJettonHoldings:
    """Tests for BalanceService.get_jetton_holdings."""

    def test_parse_row_defaults(self):
        holding = parse_jetton_row({"balance": "10", "jetton": {"address": "0:" + "b" * 64}})

        assert holding.symbol == "UNKNOWN"
        assert holding.display_name == "Unknown Jetton"
        assert holding.decimals == 9
        assert holding.verified is False

    def test_parse_row_skips(self):
        assert parse_jetton_row({"balance": "0", "jetton": {"address": "0:x"}}) is None
        assert parse_jetton_row({"balance": "5", "jetton": {}}) is None
        assert parse_jetton_row({"balance": "5"}) is None
        assert parse_jetton_row("junk") is None

    def test_parse_row_ipfs_icon_and_verification(self):
        row = jetton_row("0:" + "c" * 64, "1000000", image="ipfs://QmIcon", verification="whitelist")
        holding = parse_jetton_row(row, "https://gw.example/ipfs/")

        assert holding.icon_url == "https://gw.example/ipfs/QmIcon"
        assert holding.verified is True
        assert holding.amount == Decimal("1")
        assert holding.wallet_address == "0:" + "a" * 64

    @pytest.mark.asyncio
    async def test_filters_and_sorts(self, service, tonapi):
        tonapi.get_jettons.return_value = [
            jetton_row("0:" + "1" * 64, "2000000", symbol="SMALL"),
            jetton_row("0:" + "2" * 64, "0", symbol="EMPTY"),
            jetton_row("0:" + "3" * 64, "5000000000", symbol="BIG", decimals=9),
            {"balance": "1"},
        ]

        holdings = await service.get_jetton_holdings(ZERO_FRIENDLY)

        assert [h.symbol for h in holdings] == ["BIG", "SMALL"]
        tonapi.get_jettons.assert_awaited_once_with(ZERO_RAW)

    @pytest.mark.asyncio
    async def test_failure_falls_back(self, service, tonapi, clock):
        tonapi.get_jettons.return_value = [jetton_row("0:" + "1" * 64, "1")]
        first = await service.get_jetton_holdings(ZERO_RAW)

        clock.advance(61)
        tonapi.get_jettons.side_effect = NetworkError("offline")

        assert await service.get_jetton_holdings(ZERO_RAW) == first

    @pytest.mark.asyncio
    async def test_failure_without_cache_is_empty(self, service, tonapi):
        tonapi.get_jettons.side_effect = LedgerAPIError("boom")

        assert await service.get_jetton_holdings(ZERO_RAW) == []
