"""Best-effort NFT discovery from the recent transaction window.

There is no ownership index behind this: candidates are accounts the
wallet has interacted with, found by three passes over the raw records.
Each pass is a pure function ``(record, wallet) -> list[str]``.

A: sources of inbound messages from other accounts
B: the account a record belongs to, when it is not the wallet
C: counterparties of messages whose payload carries an NFT opcode
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from tonpocket.address import cache_key, try_normalize
from tonpocket.config import Settings, get_settings
from tonpocket.scanner.cells import NFT_OPCODES, contains_opcode, decode_b64
from tonpocket.scanner.fields import (
    as_text,
    first_field,
    message_body_b64,
    message_destination,
    message_source,
    tx_in_msg,
    tx_out_msgs,
)
from tonpocket.utils.cache import CacheKind, ResultCache

logger = logging.getLogger(__name__)

RAW_WINDOW = 50


@dataclass
class NFTItem:
    """A candidate NFT. Not proof of ownership."""

    address: str
    name: Optional[str] = None
    collection_address: Optional[str] = None
    owner_address: Optional[str] = None
    index: Optional[int] = None
    description: Optional[str] = None
    image: Optional[str] = None
    preview_image: Optional[str] = None
    attributes: list[dict] = field(default_factory=list)
    content_uri: Optional[str] = None


Pass = Callable[[dict, str], list[str]]


def incoming_sources(record: dict, wallet: str) -> list[str]:
    source = message_source(tx_in_msg(record))
    if source and cache_key(source) != cache_key(wallet):
        return [source]
    return []


def context_addresses(record: dict, wallet: str) -> list[str]:
    account = first_field(record, ("address", "account"))
    if isinstance(account, dict):
        account = account.get("account_address") or account.get("address")
    account = as_text(account)
    if account and cache_key(account) != cache_key(wallet):
        return [account]
    return []


def _carries_nft_opcode(message: dict) -> bool:
    for text in (message_body_b64(message), as_text(message.get("raw_payload"))):
        payload = decode_b64(text) if text else None
        if payload and contains_opcode(payload, NFT_OPCODES) is not None:
            return True
    return False


def opcode_marked(record: dict, wallet: str) -> list[str]:
    found = []
    in_msg = tx_in_msg(record)
    if in_msg and _carries_nft_opcode(in_msg):
        source = message_source(in_msg)
        if source:
            found.append(source)
    for msg in tx_out_msgs(record):
        if _carries_nft_opcode(msg):
            destination = message_destination(msg)
            if destination:
                found.append(destination)
    return [addr for addr in found if cache_key(addr) != cache_key(wallet)]


def discover_candidates(records: list[Any], wallet: str, opcode_cap: int = 20) -> list[str]:
    """Ordered, deduplicated candidate addresses from all three passes."""
    seen = {cache_key(wallet)}
    candidates: list[str] = []

    def add(address: str) -> bool:
        key = cache_key(address)
        if not key or key in seen:
            return False
        seen.add(key)
        parsed = try_normalize(address)
        candidates.append(parsed.to_user_friendly() if parsed is not None else address.strip())
        return True

    dict_records = [record for record in records if isinstance(record, dict)]

    address_passes: tuple[Pass, ...] = (incoming_sources, context_addresses)
    for scan_pass in address_passes:
        for record in dict_records:
            for address in scan_pass(record, wallet):
                add(address)

    added = 0
    for record in dict_records:
        if added >= opcode_cap:
            break
        for address in opcode_marked(record, wallet):
            if added >= opcode_cap:
                break
            if add(address):
                added += 1

    return candidates


class NFTScanner:
    """Cached NFT candidate discovery.

    Usage:
        scanner = NFTScanner(transaction_service, cache)
        items = await scanner.scan("EQ...")
    """

    def __init__(
        self,
        transactions,
        cache: ResultCache,
        settings: Optional[Settings] = None,
        window: int = RAW_WINDOW,
    ):
        """Initialize the scanner.

        Args:
            transactions: TransactionService providing the raw record window
            cache: Shared result cache
            settings: Application settings
            window: Number of raw records to scan
        """
        self.transactions = transactions
        self.cache = cache
        self.settings = settings or get_settings()
        self.window = window

    async def scan(self, address, force: bool = False) -> list[NFTItem]:
        """Candidate NFTs named ``NFT #1..n``. Never raises."""
        key = cache_key(address)

        if not force:
            cached = self.cache.get_fresh(CacheKind.NFTS, key)
            if cached is not None:
                return cached

        try:
            records = await self.transactions.get_raw_transactions(
                address, self.window, use_cache=not force
            )
        except Exception as e:
            logger.warning(f"NFT scan failed for {key}: {e}")
            return self.cache.get_stale(CacheKind.NFTS, key, [])

        candidates = discover_candidates(records, address, self.settings.nft_opcode_scan_cap)
        items = [
            NFTItem(address=candidate, name=f"NFT #{number}")
            for number, candidate in enumerate(candidates, start=1)
        ]
        self.cache.put(CacheKind.NFTS, key, items)
        logger.info(f"Found {len(items)} NFT candidates for {key}")
        return items
