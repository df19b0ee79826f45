"""Wallet services: balances, history, NFTs and the send path."""

from tonpocket.services.balance_service import BalanceService, JettonHolding
from tonpocket.services.nft_details import NFTDetailsFetcher
from tonpocket.services.nft_scanner import NFTItem, NFTScanner
from tonpocket.services.transaction_service import Transaction, TransactionService
from tonpocket.services.wallet import TransferRequest, TransferSigner, WalletService, WalletSnapshot

__all__ = [
    "BalanceService",
    "JettonHolding",
    "NFTDetailsFetcher",
    "NFTItem",
    "NFTScanner",
    "Transaction",
    "TransactionService",
    "TransferRequest",
    "TransferSigner",
    "WalletService",
    "WalletSnapshot",
]
