"""Main entry point - wiring and an operational CLI.

Usage:
    python -m tonpocket balance <address>
    python -m tonpocket tokens <address>
    python -m tonpocket history <address> [--limit 20]
    python -m tonpocket nfts <address> [--details]
    python -m tonpocket decode-uri <uri>
    python -m tonpocket sessions [--remove REQUEST_ID]
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from typing import Optional

from tonpocket.address import format_ton
from tonpocket.config import Settings, get_settings
from tonpocket.connect.codec import decode_connection_request
from tonpocket.connect.session import ConnectSessionManager, LinkOpener
from tonpocket.errors import get_user_friendly_error
from tonpocket.scanner.tonapi import TonApiClient
from tonpocket.scanner.toncenter import TonCenterClient
from tonpocket.services.balance_service import BalanceService
from tonpocket.services.nft_details import NFTDetailsFetcher
from tonpocket.services.nft_scanner import NFTScanner
from tonpocket.services.transaction_service import TransactionService
from tonpocket.services.wallet import TransferSigner, WalletService
from tonpocket.storage.database import close_db, init_db
from tonpocket.utils.cache import CacheKind, ResultCache
from tonpocket.utils.ratelimit import ActionRateLimiter
from tonpocket.utils.retry import RateLimitedFetcher
from tonpocket.utils.security import SecurityEventLog

logger = logging.getLogger(__name__)


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging; DEBUG when settings.debug is set."""
    settings = settings or get_settings()
    log_level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_wallet(
    settings: Optional[Settings] = None,
    signer: Optional[TransferSigner] = None,
) -> WalletService:
    """Create the services for one wallet session."""
    settings = settings or get_settings()

    toncenter = TonCenterClient(
        api_url=settings.toncenter_api_url,
        api_key=settings.toncenter_api_key,
        timeout=settings.http_timeout,
    )
    tonapi = TonApiClient(
        base_url=settings.tonapi_url,
        api_key=settings.tonapi_key,
        timeout=settings.http_timeout,
    )
    fetcher = RateLimitedFetcher(
        max_attempts=settings.fetch_max_attempts,
        base_delay=settings.fetch_base_delay,
    )
    cache = ResultCache(
        ttls={
            CacheKind.BALANCE: settings.balance_ttl,
            CacheKind.TRANSACTIONS: settings.transactions_ttl,
            CacheKind.JETTONS: settings.jettons_ttl,
        }
    )

    transactions = TransactionService(toncenter, tonapi, fetcher, cache, settings)
    return WalletService(
        balances=BalanceService(toncenter, tonapi, fetcher, cache, settings),
        transactions=transactions,
        nfts=NFTScanner(transactions, cache, settings),
        nft_details=NFTDetailsFetcher(toncenter, fetcher, settings),
        toncenter=toncenter,
        fetcher=fetcher,
        cache=cache,
        limiter=ActionRateLimiter(
            window_seconds=settings.send_window_seconds,
            max_requests=settings.send_max_requests,
        ),
        security_log=SecurityEventLog(),
        signer=signer,
        settings=settings,
    )


def build_connect_manager(
    settings: Optional[Settings] = None,
    link_opener: Optional[LinkOpener] = None,
) -> ConnectSessionManager:
    """Create the connect manager, using Telegram when a bot is configured."""
    settings = settings or get_settings()
    if link_opener is None and settings.telegram_bot_token:
        from tonpocket.notifications.telegram import TelegramLinkOpener

        link_opener = TelegramLinkOpener()
    return ConnectSessionManager(link_opener=link_opener, settings=settings)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _cmd_balance(args, settings: Settings) -> int:
    wallet = build_wallet(settings)
    nano = await wallet.balances.get_balance(args.address)
    print(f"{format_ton(nano)} TON ({nano} nanoton)")
    return 0


async def _cmd_tokens(args, settings: Settings) -> int:
    wallet = build_wallet(settings)
    holdings = await wallet.balances.get_jetton_holdings(args.address)
    if not holdings:
        print("No jettons")
    for holding in holdings:
        mark = " (verified)" if holding.verified else ""
        print(f"{holding.amount:f} {holding.symbol} - {holding.display_name}{mark}")
    return 0


async def _cmd_history(args, settings: Settings) -> int:
    wallet = build_wallet(settings)
    history = await wallet.transactions.get_history(args.address, limit=args.limit)
    if args.json:
        _print_json([asdict(tx) for tx in history])
        return 0
    if not history:
        print("No transactions")
    for tx in history:
        arrow = "<-" if tx.direction.value == "in" else "->"
        counter = tx.from_address if tx.direction.value == "in" else tx.to_address
        token = f" [{tx.token_amount or '?'} {tx.token_symbol}]" if tx.token_symbol else ""
        print(f"{tx.timestamp} {arrow} {counter} {tx.amount_ton} TON{token} {tx.status.value}")
    return 0


async def _cmd_nfts(args, settings: Settings) -> int:
    wallet = build_wallet(settings)
    items = await wallet.get_nfts(args.address)
    if args.details:
        detailed = await asyncio.gather(*(wallet.get_nft_details(item) for item in items))
        items = [item for item in detailed if item is not None]
    if args.json:
        _print_json([asdict(item) for item in items])
        return 0
    if not items:
        print("No NFT candidates")
    for item in items:
        print(f"{item.name}: {item.address}")
    return 0


async def _cmd_decode_uri(args, settings: Settings) -> int:
    decoded = decode_connection_request(args.uri)
    if decoded is None:
        print("Not a valid connection request", file=sys.stderr)
        return 1
    _print_json(asdict(decoded))
    return 0


async def _cmd_sessions(args, settings: Settings) -> int:
    await init_db()
    try:
        manager = build_connect_manager(settings)
        if args.remove:
            removed = await manager.remove_session(args.remove)
            print("Removed" if removed else "No such session")
            return 0 if removed else 1
        sessions = await manager.list_sessions()
        _print_json([session.model_dump(by_alias=True) for session in sessions])
        return 0
    finally:
        await close_db()


COMMANDS = {
    "balance": _cmd_balance,
    "tokens": _cmd_tokens,
    "history": _cmd_history,
    "nfts": _cmd_nfts,
    "decode-uri": _cmd_decode_uri,
    "sessions": _cmd_sessions,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tonpocket", description="TON wallet core tools")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("balance", "Show native balance"),
        ("tokens", "List jetton holdings"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("address")

    history = sub.add_parser("history", help="Show reconciled transaction history")
    history.add_argument("address")
    history.add_argument("--limit", type=int, default=20)
    history.add_argument("--json", action="store_true", help="Print JSON")

    nfts = sub.add_parser("nfts", help="List NFT candidates")
    nfts.add_argument("address")
    nfts.add_argument("--details", action="store_true", help="Fetch on-chain and off-chain details")
    nfts.add_argument("--json", action="store_true", help="Print JSON")

    decode = sub.add_parser("decode-uri", help="Decode a TON Connect request URI")
    decode.add_argument("uri")

    sessions = sub.add_parser("sessions", help="List or remove connected dApps")
    sessions.add_argument("--remove", metavar="REQUEST_ID", help="Remove one session")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings)

    try:
        return asyncio.run(COMMANDS[args.command](args, settings))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        return 130
    except Exception as e:
        details = get_user_friendly_error(e)
        logger.error(f"{args.command} failed: {details.code} {details.message}")
        print(details.user_message, file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
