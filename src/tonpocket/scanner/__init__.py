"""Remote ledger clients and raw-record readers."""

from tonpocket.scanner.base import LedgerClient
from tonpocket.scanner.tonapi import TonApiClient
from tonpocket.scanner.toncenter import TonCenterClient

__all__ = ["LedgerClient", "TonApiClient", "TonCenterClient"]
