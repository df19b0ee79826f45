"""Native balance and jetton holdings.

Read paths never raise: on failure they serve the last cached value, or a
neutral default (``"0"`` / empty list) when nothing was ever fetched.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from tonpocket.address import cache_key, try_normalize
from tonpocket.config import Settings, get_settings
from tonpocket.errors import LedgerAPIError
from tonpocket.scanner.fields import as_int, as_text, first_field
from tonpocket.scanner.tonapi import TonApiClient
from tonpocket.scanner.toncenter import TonCenterClient
from tonpocket.utils.cache import CacheKind, ResultCache
from tonpocket.utils.ipfs import DEFAULT_GATEWAY, ipfs_to_http
from tonpocket.utils.retry import RateLimitedFetcher

logger = logging.getLogger(__name__)

DIGITS = re.compile(r"^\d+$")


@dataclass
class JettonHolding:
    """A fungible token balance held by the wallet."""

    contract_address: str
    symbol: str
    display_name: str
    decimals: int
    balance: str
    icon_url: Optional[str] = None
    verified: bool = False
    wallet_address: Optional[str] = None

    @property
    def amount(self) -> Decimal:
        """Balance in human units."""
        try:
            return Decimal(self.balance).scaleb(-self.decimals)
        except InvalidOperation:
            return Decimal(0)


def address_forms(address) -> list[str]:
    """Forms to query with: raw first, then user-friendly.

    An unparseable address is passed through as given.
    """
    parsed = try_normalize(address)
    if parsed is None:
        return [str(address).strip()]
    return [parsed.to_raw(), parsed.to_user_friendly()]


def parse_balance(value: Any) -> str:
    """Extract a nanoton balance as a decimal string.

    Accepts ``"1500000000"``, ``1500000000``, ``{"balance": ...}`` and
    ``{"result": ...}``.

    Raises:
        LedgerAPIError: if the value is not a non-negative integer
    """
    if isinstance(value, dict):
        value = first_field(value, ("balance", "result"))
    if isinstance(value, bool):
        raise LedgerAPIError(f"Unexpected balance payload: {value!r}")
    if isinstance(value, int) and value >= 0:
        return str(value)
    if isinstance(value, str) and DIGITS.match(value.strip()):
        return str(int(value.strip()))
    raise LedgerAPIError(f"Unexpected balance payload: {str(value)[:80]!r}")


def parse_jetton_row(row: Any, gateway: Optional[str] = None) -> Optional[JettonHolding]:
    """Build a holding from a tonapi ``balances`` entry; None to skip it."""
    if not isinstance(row, dict):
        return None

    jetton = row.get("jetton")
    if not isinstance(jetton, dict):
        return None

    contract = as_text(jetton.get("address"))
    balance = as_int(row.get("balance"), 0)
    if not contract or balance <= 0:
        return None

    decimals = as_int(jetton.get("decimals"), 9)
    if decimals < 0 or decimals > 255:
        decimals = 9

    image = ipfs_to_http(as_text(jetton.get("image")) or None, gateway or DEFAULT_GATEWAY)

    wallet = as_text(row.get("wallet_address")) or None
    verification = as_text(jetton.get("verification")).lower()

    return JettonHolding(
        contract_address=contract,
        symbol=as_text(jetton.get("symbol")) or "UNKNOWN",
        display_name=as_text(jetton.get("name")) or "Unknown Jetton",
        decimals=decimals,
        balance=str(balance),
        icon_url=image,
        verified=verification == "whitelist" or jetton.get("verified") is True,
        wallet_address=wallet,
    )


class BalanceService:
    """Cached, rate-limit aware balance queries.

    Usage:
        service = BalanceService(toncenter, tonapi, fetcher, cache)
        nano = await service.get_balance("EQ...")
        holdings = await service.get_jetton_holdings("EQ...")
    """

    def __init__(
        self,
        toncenter: TonCenterClient,
        tonapi: TonApiClient,
        fetcher: RateLimitedFetcher,
        cache: ResultCache,
        settings: Optional[Settings] = None,
    ):
        self.toncenter = toncenter
        self.tonapi = tonapi
        self.fetcher = fetcher
        self.cache = cache
        self.settings = settings or get_settings()

    async def get_balance(self, address, force: bool = False) -> str:
        """Native balance in nanotons as a decimal string."""
        key = cache_key(address)

        if not force:
            cached = self.cache.get_fresh(CacheKind.BALANCE, key)
            if cached is not None:
                return cached

        try:
            balance = await self._fetch_balance(address)
        except Exception as e:
            logger.warning(f"Balance fetch failed for {key}: {e}")
            return self.cache.get_stale(CacheKind.BALANCE, key, "0")

        self.cache.put(CacheKind.BALANCE, key, balance)
        return balance

    async def _fetch_balance(self, address) -> str:
        forms = address_forms(address)
        for index, form in enumerate(forms):
            try:
                result = await self.fetcher.call(
                    lambda form=form: self.toncenter.get_balance(form), label="balance"
                )
                return parse_balance(result)
            except LedgerAPIError as e:
                if index == len(forms) - 1:
                    raise
                logger.debug(f"Balance lookup rejected {form}, trying alternate form: {e}")
        raise LedgerAPIError("No address form to query")

    async def get_jetton_holdings(self, address, force: bool = False) -> list[JettonHolding]:
        """Non-zero jetton balances, largest first."""
        key = cache_key(address)

        if not force:
            cached = self.cache.get_fresh(CacheKind.JETTONS, key)
            if cached is not None:
                return cached

        account = address_forms(address)[0]
        try:
            rows = await self.fetcher.call(
                lambda: self.tonapi.get_jettons(account), label="jettons"
            )
        except Exception as e:
            logger.warning(f"Jetton fetch failed for {key}: {e}")
            return self.cache.get_stale(CacheKind.JETTONS, key, [])

        gateways = self.settings.gateway_list
        gateway = gateways[0] if gateways else None

        holdings = []
        for row in rows:
            try:
                holding = parse_jetton_row(row, gateway)
            except Exception as e:
                logger.debug(f"Skipping malformed jetton row: {e}")
                continue
            if holding is not None:
                holdings.append(holding)

        holdings.sort(key=lambda h: h.amount, reverse=True)
        self.cache.put(CacheKind.JETTONS, key, holdings)
        return holdings
