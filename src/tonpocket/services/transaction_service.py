"""Transaction history reconciliation.

Turns raw ledger records into directional, typed entries:

- a record whose inbound message comes from another account is one
  incoming entry;
- otherwise each outbound message is one outgoing entry;
- jetton transfers riding on native messages are recognised first from the
  indexer's event annotations, then from the message body opcode.

The raw window is cached separately (``raw:<key>``) so the NFT scanner can
reuse it without another round-trip.
"""

import asyncio
import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from tonpocket.address import cache_key, format_ton, format_units, same_account, try_normalize
from tonpocket.config import Settings, get_settings
from tonpocket.errors import LedgerAPIError
from tonpocket.scanner.cells import JETTON_OPCODES, cell_from_b64, read_jetton_amount, read_opcode
from tonpocket.scanner.fields import (
    as_int,
    as_text,
    message_body_b64,
    message_comment,
    message_destination,
    message_source,
    message_value,
    tx_account,
    tx_fee,
    tx_hash,
    tx_in_msg,
    tx_lt,
    tx_out_msgs,
    tx_succeeded,
    tx_utime,
)
from tonpocket.scanner.tonapi import TonApiClient
from tonpocket.scanner.toncenter import TonCenterClient
from tonpocket.services.balance_service import address_forms
from tonpocket.utils.cache import CacheKind, ResultCache
from tonpocket.utils.retry import RateLimitedFetcher

logger = logging.getLogger(__name__)

JETTON_FALLBACK_SYMBOL = "JETTON"


class TxStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class TokenKind(str, Enum):
    NATIVE = "native"
    JETTON = "jetton"


class Direction(str, Enum):
    IN = "in"
    OUT = "out"


@dataclass
class TokenAnnotation:
    """Jetton details attached to a native message."""

    symbol: str
    amount: Optional[str] = None


@dataclass
class Transaction:
    """One directional history entry."""

    hash: str
    from_address: str
    to_address: str
    amount: str
    timestamp: int
    status: TxStatus
    direction: Direction
    token_kind: TokenKind = TokenKind.NATIVE
    token_symbol: Optional[str] = None
    token_amount: Optional[str] = None
    lt: Optional[int] = None
    fee: Optional[str] = None
    comment: Optional[str] = None

    @property
    def identity(self) -> tuple[str, int]:
        return (self.hash, self.timestamp)

    @property
    def amount_ton(self) -> str:
        return format_ton(self.amount)


# ---------------------------------------------------------------------------
# Event annotations
# ---------------------------------------------------------------------------


def hash_variants(value: str) -> set[str]:
    """Equivalent spellings of a 32-byte hash: hex, base64 and base64url."""
    text = (value or "").strip()
    if not text:
        return set()

    variants = {text}
    raw: Optional[bytes] = None
    try:
        if len(text) == 64:
            raw = bytes.fromhex(text)
    except ValueError:
        raw = None
    if raw is None:
        try:
            standard = text.replace("-", "+").replace("_", "/")
            raw = base64.b64decode(standard + "=" * (-len(standard) % 4), validate=True)
        except (binascii.Error, ValueError):
            raw = None

    if raw is not None and len(raw) == 32:
        variants.add(raw.hex())
        variants.add(base64.b64encode(raw).decode("ascii"))
        variants.add(base64.urlsafe_b64encode(raw).decode("ascii"))
    return variants


def annotation_from_event(event: Any) -> Optional[TokenAnnotation]:
    """First jetton transfer action of a tonapi event, if any."""
    if not isinstance(event, dict):
        return None
    for action in event.get("actions") or []:
        if not isinstance(action, dict) or action.get("type") != "JettonTransfer":
            continue
        details = action.get("JettonTransfer")
        if not isinstance(details, dict):
            continue
        jetton = details.get("jetton")
        if not isinstance(jetton, dict):
            jetton = {}
        symbol = as_text(jetton.get("symbol")) or JETTON_FALLBACK_SYMBOL
        amount = details.get("amount")
        if amount is not None:
            decimals = as_int(jetton.get("decimals"), 9)
            amount = format_units(amount, decimals)
        return TokenAnnotation(symbol=symbol, amount=amount)
    return None


def build_event_lookup(events: list[dict]) -> dict[str, TokenAnnotation]:
    """Map every spelling of each event id to its jetton annotation."""
    lookup: dict[str, TokenAnnotation] = {}
    for event in events:
        try:
            annotation = annotation_from_event(event)
        except Exception as e:
            logger.debug(f"Skipping unreadable event: {e}")
            continue
        if annotation is None:
            continue
        for key in hash_variants(as_text(event.get("event_id"))):
            lookup[key] = annotation
    return lookup


# ---------------------------------------------------------------------------
# Token classifiers, tried in order; the first non-None answer wins
# ---------------------------------------------------------------------------

Classifier = Callable[[dict, dict, dict[str, TokenAnnotation]], Optional[TokenAnnotation]]


def classify_by_event(
    record: dict, message: dict, lookup: dict[str, TokenAnnotation]
) -> Optional[TokenAnnotation]:
    for key in hash_variants(tx_hash(record)):
        if key in lookup:
            return lookup[key]
    return None


def classify_by_opcode(
    record: dict, message: dict, lookup: dict[str, TokenAnnotation]
) -> Optional[TokenAnnotation]:
    body = cell_from_b64(message_body_b64(message))
    if read_opcode(body) not in JETTON_OPCODES:
        return None
    amount = read_jetton_amount(body)
    return TokenAnnotation(
        symbol=JETTON_FALLBACK_SYMBOL,
        amount=format_units(amount) if amount is not None else None,
    )


CLASSIFIERS: tuple[Classifier, ...] = (classify_by_event, classify_by_opcode)


def classify(
    record: dict, message: dict, lookup: dict[str, TokenAnnotation]
) -> Optional[TokenAnnotation]:
    for classifier in CLASSIFIERS:
        annotation = classifier(record, message, lookup)
        if annotation is not None:
            return annotation
    return None


# ---------------------------------------------------------------------------
# Record reconciliation
# ---------------------------------------------------------------------------


def synthetic_hash(record: dict) -> str:
    """Deterministic stand-in for a record the API returned without a hash."""
    in_msg = tx_in_msg(record)
    parts = [
        tx_account(record),
        str(tx_lt(record)),
        str(tx_utime(record)),
        message_source(in_msg),
        str(message_value(in_msg)),
    ]
    for msg in tx_out_msgs(record):
        parts.append(f"{message_destination(msg)}:{message_value(msg)}")
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return f"local:{digest}"


def _display(address: str) -> str:
    parsed = try_normalize(address)
    return parsed.to_user_friendly() if parsed is not None else address


def reconcile_record(
    record: dict, wallet: str, lookup: Optional[dict[str, TokenAnnotation]] = None
) -> list[Transaction]:
    """Directional entries for one raw record (possibly none)."""
    lookup = lookup or {}
    base_hash = tx_hash(record) or synthetic_hash(record)
    timestamp = tx_utime(record)
    lt = tx_lt(record) or None
    fee = tx_fee(record)
    status = TxStatus.FAILED if tx_succeeded(record) is False else TxStatus.SUCCESS
    wallet_display = _display(wallet)

    in_msg = tx_in_msg(record)
    source = message_source(in_msg)

    legs: list[tuple[dict, Direction, str, str]] = []
    if source and not same_account(source, wallet):
        legs.append((in_msg, Direction.IN, source, message_destination(in_msg) or wallet_display))
    else:
        for msg in tx_out_msgs(record):
            legs.append((msg, Direction.OUT, message_source(msg) or wallet_display, message_destination(msg)))

    entries = []
    for index, (msg, direction, from_address, to_address) in enumerate(legs):
        counter = from_address if direction == Direction.IN else to_address
        value = message_value(msg)
        if not counter and value == 0:
            continue

        annotation = classify(record, msg, lookup)
        entries.append(
            Transaction(
                hash=base_hash if index == 0 else f"{base_hash}-{index}",
                from_address=from_address,
                to_address=to_address,
                amount=str(value),
                timestamp=timestamp,
                status=status,
                direction=direction,
                token_kind=TokenKind.JETTON if annotation else TokenKind.NATIVE,
                token_symbol=annotation.symbol if annotation else None,
                token_amount=annotation.amount if annotation else None,
                lt=lt,
                fee=str(fee) if fee else None,
                comment=message_comment(msg),
            )
        )
    return entries


def reconcile(
    records: list[Any], wallet: str, lookup: Optional[dict[str, TokenAnnotation]] = None
) -> list[Transaction]:
    """Reconcile, dedup by ``(hash, timestamp)`` and sort newest first."""
    seen: set[tuple[str, int]] = set()
    transactions = []
    for record in records:
        if not isinstance(record, dict):
            continue
        try:
            entries = reconcile_record(record, wallet, lookup)
        except Exception as e:
            logger.debug(f"Skipping unreadable transaction record: {e}")
            continue
        for entry in entries:
            if entry.identity in seen:
                continue
            seen.add(entry.identity)
            transactions.append(entry)

    transactions.sort(key=lambda tx: (tx.timestamp, tx.lt or 0), reverse=True)
    return transactions


class TransactionService:
    """Cached history for one or more wallets.

    Usage:
        service = TransactionService(toncenter, tonapi, fetcher, cache)
        history = await service.get_history("EQ...", limit=20)
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

    async def get_raw_transactions(
        self, address, limit: int = 20, use_cache: bool = True
    ) -> list[dict]:
        """Raw records, trying the raw address form first.

        Raises:
            Exception: whatever the last attempted form failed with
        """
        key = f"raw:{cache_key(address)}"
        if use_cache:
            cached = self.cache.get_fresh(CacheKind.TRANSACTIONS, key)
            if cached is not None and cached[0] >= limit:
                return cached[1][:limit]

        forms = address_forms(address)
        for index, form in enumerate(forms):
            try:
                result = await self.fetcher.call(
                    lambda form=form: self.toncenter.get_transactions(form, limit),
                    label="transactions",
                )
                if not isinstance(result, list):
                    raise LedgerAPIError(f"Unexpected transactions payload: {str(result)[:80]!r}")
                records = [record for record in result if isinstance(record, dict)]
                self.cache.put(CacheKind.TRANSACTIONS, key, (limit, records))
                return records
            except Exception as e:
                if index == len(forms) - 1:
                    raise
                logger.debug(f"Transactions lookup failed for {form}, trying alternate form: {e}")
        raise LedgerAPIError("No address form to query")

    async def _event_lookup(self, address, limit: int) -> dict[str, TokenAnnotation]:
        """Jetton annotations from the indexer; empty on failure or timeout."""
        account = address_forms(address)[0]
        window = max(limit, self.settings.events_window)
        try:
            events = await asyncio.wait_for(
                self.tonapi.get_events(account, window), timeout=self.settings.events_timeout
            )
        except asyncio.TimeoutError:
            logger.debug(f"Events lookup timed out for {account}")
            return {}
        except Exception as e:
            logger.debug(f"Events lookup failed for {account}: {e}")
            return {}
        return build_event_lookup(events)

    async def get_history(self, address, limit: int = 20, force: bool = False) -> list[Transaction]:
        """Reconciled history, newest first. Never raises."""
        key = cache_key(address)

        if not force:
            cached = self.cache.get_fresh(CacheKind.TRANSACTIONS, key)
            if cached is not None and cached[0] >= limit:
                return cached[1][:limit]

        raw, lookup = await asyncio.gather(
            self.get_raw_transactions(address, limit, use_cache=not force),
            self._event_lookup(address, limit),
            return_exceptions=True,
        )
        if isinstance(raw, BaseException):
            logger.warning(f"History fetch failed for {key}: {raw}")
            return self.cache.get_stale(CacheKind.TRANSACTIONS, key, (0, []))[1][:limit]
        if isinstance(lookup, BaseException):
            lookup = {}

        transactions = reconcile(raw, address, lookup)[:limit]
        self.cache.put(CacheKind.TRANSACTIONS, key, (limit, transactions))
        logger.debug(f"Reconciled {len(raw)} records into {len(transactions)} entries for {key}")
        return transactions
