"""Wallet facade: fan-out refresh and the native send path.

Signing flow:
1. Validate destination and amount
2. Check the local transfer limiter
3. Hand a TransferRequest to the signer (keys never reach this module)
4. Submit the signed message through the ledger client
5. Invalidate and refresh balance / history
"""

import asyncio
import hashlib
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from tonpocket.address import cache_key, normalize, to_nano, try_normalize, validate_address, validate_amount
from tonpocket.config import Settings, get_settings
from tonpocket.errors import TransferFailedError, TransferRateLimitedError, WalletLockedError
from tonpocket.scanner.toncenter import TonCenterClient
from tonpocket.services.balance_service import BalanceService, JettonHolding
from tonpocket.services.nft_details import NFTDetailsFetcher
from tonpocket.services.nft_scanner import NFTItem, NFTScanner
from tonpocket.services.transaction_service import (
    Direction,
    Transaction,
    TransactionService,
    TxStatus,
)
from tonpocket.utils.cache import CacheKind, ResultCache
from tonpocket.utils.ratelimit import ActionRateLimiter
from tonpocket.utils.retry import RateLimitedFetcher
from tonpocket.utils.security import SecurityEventLog

logger = logging.getLogger(__name__)


@dataclass
class TransferRequest:
    """Native transfer to be signed.

    Attributes:
        from_address: Sender wallet (user-friendly form)
        to_address: Destination (user-friendly form)
        amount_nano: Amount in nanotons
        comment: Optional text comment
    """

    from_address: str
    to_address: str
    amount_nano: int
    comment: Optional[str] = None


class TransferSigner(ABC):
    """Signs outgoing transfers. Implemented outside the core."""

    @abstractmethod
    async def sign_transfer(self, request: TransferRequest) -> str:
        """Build and sign the external message.

        Returns:
            Base64 BOC ready for submission
        """
        pass


@dataclass
class WalletSnapshot:
    """Everything the home screen shows for one address."""

    address: str
    balance: str
    jettons: list[JettonHolding] = field(default_factory=list)
    history: list[Transaction] = field(default_factory=list)


class WalletService:
    """Entry point used by the presentation layer."""

    def __init__(
        self,
        balances: BalanceService,
        transactions: TransactionService,
        nfts: NFTScanner,
        nft_details: NFTDetailsFetcher,
        toncenter: TonCenterClient,
        fetcher: RateLimitedFetcher,
        cache: ResultCache,
        limiter: Optional[ActionRateLimiter] = None,
        security_log: Optional[SecurityEventLog] = None,
        signer: Optional[TransferSigner] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.balances = balances
        self.transactions = transactions
        self.nfts = nfts
        self.nft_details = nft_details
        self.toncenter = toncenter
        self.fetcher = fetcher
        self.cache = cache
        self.limiter = limiter or ActionRateLimiter(
            window_seconds=self.settings.send_window_seconds,
            max_requests=self.settings.send_max_requests,
        )
        self.security_log = security_log or SecurityEventLog()
        self.signer = signer

    async def refresh(self, address, force: bool = False, history_limit: int = 20) -> WalletSnapshot:
        """Balance, jettons and history fetched concurrently."""
        balance, jettons, history = await asyncio.gather(
            self.balances.get_balance(address, force=force),
            self.balances.get_jetton_holdings(address, force=force),
            self.transactions.get_history(address, limit=history_limit, force=force),
        )
        parsed = try_normalize(address)
        display = parsed.to_user_friendly() if parsed is not None else str(address).strip()
        return WalletSnapshot(address=display, balance=balance, jettons=jettons, history=history)

    async def get_nfts(self, address, force: bool = False) -> list[NFTItem]:
        return await self.nfts.scan(address, force=force)

    async def get_nft_details(self, item: NFTItem) -> Optional[NFTItem]:
        return await self.nft_details.get_details(item.address, existing=item)

    def lock(self) -> None:
        """Forget the signer and everything cached for the session."""
        self.signer = None
        self.cache.clear()

    async def send_ton(
        self,
        from_address,
        to_address: str,
        amount,
        comment: Optional[str] = None,
    ) -> Transaction:
        """Sign and submit a native transfer.

        Returns:
            A pending history entry for the submitted message

        Raises:
            WalletLockedError: no signer available
            InvalidAddressError / InvalidAmountError: bad input
            TransferRateLimitedError: local transfer limit reached
            TransferFailedError: signing or submission failed
        """
        if self.signer is None:
            raise WalletLockedError("No signer available")

        sender = normalize(from_address)
        destination = validate_address(to_address)
        value = validate_amount(amount)
        amount_nano = to_nano(amount)

        limit_key = f"send_{sender.to_raw()}"
        if not self.limiter.is_allowed(limit_key):
            wait = self.limiter.time_until_next(limit_key)
            self.security_log.log("rate_limit_exceeded", action="send_ton", address=sender.to_raw())
            raise TransferRateLimitedError(math.ceil(wait))

        request = TransferRequest(
            from_address=sender.to_user_friendly(),
            to_address=destination.to_user_friendly(),
            amount_nano=amount_nano,
            comment=comment,
        )
        self.security_log.log(
            "transfer_initiated", to=request.to_address, amount=str(value), has_comment=bool(comment)
        )

        try:
            boc = await self.signer.sign_transfer(request)
            await self.fetcher.call(lambda: self.toncenter.send_boc(boc), label="sendBoc")
        except Exception as e:
            logger.error(f"Transfer to {request.to_address} failed: {e}")
            self.security_log.log("transfer_failed", to=request.to_address, error=str(e))
            if isinstance(e, TransferFailedError):
                raise
            raise TransferFailedError(str(e)) from e

        self.security_log.log("transfer_submitted", to=request.to_address, amount=str(value))
        logger.info(f"Submitted transfer of {value} TON to {request.to_address}")

        key = cache_key(sender)
        self.cache.invalidate(CacheKind.BALANCE, key)
        self.cache.invalidate(CacheKind.TRANSACTIONS, key)
        self.cache.invalidate(CacheKind.TRANSACTIONS, f"raw:{key}")
        await self.refresh(sender, force=True)

        return Transaction(
            hash="local:" + hashlib.sha256(boc.encode("utf-8")).hexdigest(),
            from_address=request.from_address,
            to_address=request.to_address,
            amount=str(amount_nano),
            timestamp=int(time.time()),
            status=TxStatus.PENDING,
            direction=Direction.OUT,
            comment=comment,
        )
