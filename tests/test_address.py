"""Tests for address normalization and amount helpers."""

from decimal import Decimal

import pytest

from conftest import ZERO_FRIENDLY, ZERO_RAW, make_address
from tonpocket.address import (
    Address,
    cache_key,
    format_ton,
    format_units,
    normalize,
    same_account,
    to_nano,
    try_normalize,
    validate_amount,
)
from tonpocket.errors import InvalidAddressError, InvalidAmountError


class TestNormalize:
    """Tests for parsing both address forms."""

    def test_known_zero_address(self):
        """User-friendly and raw zero address are the same account."""
        friendly = normalize(ZERO_FRIENDLY)
        raw = normalize(ZERO_RAW)

        assert friendly == raw
        assert friendly.to_raw() == ZERO_RAW
        assert raw.to_user_friendly() == ZERO_FRIENDLY
        assert friendly.bounceable is True
        assert friendly.testnet is False

    def test_strips_whitespace(self):
        """Surrounding whitespace from copy/paste is ignored."""
        assert normalize(f"  {ZERO_FRIENDLY}\n") == normalize(ZERO_RAW)

    @pytest.mark.parametrize("seed", [1, 7, 200, 255])
    def test_round_trip(self, seed):
        """Rendering and re-parsing keeps the account."""
        address = make_address(seed)

        assert normalize(address.to_raw()) == address
        assert normalize(address.to_user_friendly()) == address
        assert normalize(address.to_user_friendly(url_safe=False)) == address
        assert normalize(normalize(address.to_user_friendly()).to_raw()) == address

    def test_flags_do_not_change_account(self):
        """Bounceable and testnet flags are rendering details."""
        address = make_address(3)
        non_bounceable = normalize(address.to_user_friendly(bounceable=False))
        testnet = normalize(address.to_user_friendly(testnet=True))

        assert non_bounceable == address
        assert non_bounceable.bounceable is False
        assert testnet == address
        assert testnet.testnet is True

    def test_masterchain_raw(self):
        """Negative workchains are supported."""
        address = make_address(9, workchain=-1)

        assert address.to_raw().startswith("-1:")
        assert normalize(address.to_user_friendly()).workchain == -1

    def test_bad_checksum_rejected(self):
        """A corrupted checksum never yields a different account."""
        corrupted = ZERO_FRIENDLY[:-2] + ("AA" if not ZERO_FRIENDLY.endswith("AA") else "BB")

        with pytest.raises(InvalidAddressError):
            normalize(corrupted)

    @pytest.mark.parametrize(
        "value",
        ["", "short", "x" * 101, "0:1234", "not an address at all!!", "EQ" + "!" * 46],
    )
    def test_invalid_inputs(self, value):
        """Malformed text is rejected."""
        with pytest.raises(InvalidAddressError):
            normalize(value)

    def test_try_normalize_returns_none(self):
        """Non-critical paths get None instead of an exception."""
        assert try_normalize("garbage-address") is None
        assert try_normalize(ZERO_FRIENDLY) == normalize(ZERO_RAW)


class TestAddressHelpers:
    """Tests for cache keys and comparisons."""

    def test_cache_key_uses_raw_form(self):
        """Both forms share one cache key."""
        assert cache_key(ZERO_FRIENDLY) == ZERO_RAW
        assert cache_key(ZERO_RAW) == ZERO_RAW

    def test_cache_key_falls_back_to_input(self):
        """Unparseable addresses still get a stable key."""
        assert cache_key("  some-unknown-form  ") == "some-unknown-form"

    def test_same_account_across_forms(self):
        """Comparison is tolerant of form differences."""
        address = make_address(42)

        assert same_account(address.to_raw(), address.to_user_friendly(bounceable=False))
        assert not same_account(address.to_raw(), make_address(43).to_raw())
        assert not same_account("", address.to_raw())

    def test_str_is_user_friendly(self):
        """Addresses print in the user-friendly form."""
        assert str(Address(workchain=0, hash_part=bytes(32))) == ZERO_FRIENDLY


class TestAmounts:
    """Tests for amount validation and formatting."""

    def test_format_ton(self):
        """Nanotons render as trimmed TON amounts."""
        assert format_ton("1500000000") == "1.5"
        assert format_ton(1) == "0.000000001"
        assert format_ton("0") == "0"
        assert format_ton("1000000000") == "1"

    def test_format_ton_garbage(self):
        """Textual API errors never render as a number."""
        assert format_ton("Ratelimit exceed") == "0"
        assert format_ton(None) == "0"

    def test_format_units_decimals(self):
        """Jetton amounts use their own decimals."""
        assert format_units("1234500", 6) == "1.2345"

    def test_to_nano(self):
        """Human amounts convert exactly."""
        assert to_nano("1.5") == 1_500_000_000
        assert to_nano("0.000000001") == 1
        assert to_nano("1,000") == 1_000_000_000_000

    def test_validate_amount(self):
        """Valid amounts come back as Decimal."""
        assert validate_amount(" 2.25 ") == Decimal("2.25")

    @pytest.mark.parametrize(
        "value", ["", "0", "-1", "abc", "1.0000000001", "1000000001", "1.2.3", None]
    )
    def test_invalid_amounts(self, value):
        """Bad amounts are rejected with a user-facing message."""
        with pytest.raises(InvalidAmountError) as exc_info:
            validate_amount(value)

        assert exc_info.value.user_message
