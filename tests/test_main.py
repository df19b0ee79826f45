"""Tests for wiring, the CLI and the Telegram link opener."""

import json
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import quote

import pytest

from conftest import ZERO_FRIENDLY
from tonpocket.config import Settings
from tonpocket.errors import NetworkError
from tonpocket.main import build_connect_manager, build_parser, build_wallet, main
from tonpocket.services.balance_service import BalanceService

PAYLOAD = json.dumps({"manifestUrl": "https://x.example/m.json", "items": [{"name": "ton_addr"}]})


class TestWiring:
    """Tests for service construction."""

    def test_build_wallet_uses_settings(self):
        settings = Settings(
            _env_file=None,
            toncenter_api_url="https://toncenter.test/api/v2/jsonRPC",
            toncenter_api_key="key",
            tonapi_url="https://tonapi.test",
            fetch_max_attempts=5,
            send_max_requests=3,
        )

        wallet = build_wallet(settings)

        assert wallet.toncenter.api_url == "https://toncenter.test/api/v2/jsonRPC"
        assert wallet.toncenter._headers["X-API-Key"] == "key"
        assert wallet.balances.tonapi.base_url == "https://tonapi.test"
        assert wallet.fetcher.max_attempts == 5
        assert wallet.limiter.max_requests == 3
        assert wallet.signer is None
        assert wallet.transactions.cache is wallet.balances.cache is wallet.nfts.cache

    def test_build_connect_manager_without_bot(self):
        manager = build_connect_manager(Settings(_env_file=None, telegram_bot_token=""))

        assert manager.link_opener is None

    def test_build_connect_manager_with_bot(self):
        settings = Settings(_env_file=None, telegram_bot_token="123:abc", telegram_chat_id=42)

        with patch("tonpocket.notifications.telegram.get_settings", return_value=settings):
            manager = build_connect_manager(settings)

        assert manager.link_opener.chat_id == 42


class TestCli:
    """Tests for the command line."""

    def test_parser(self):
        args = build_parser().parse_args(["history", ZERO_FRIENDLY, "--limit", "5", "--json"])

        assert args.command == "history"
        assert args.limit == 5
        assert args.json is True

    def test_parser_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_decode_uri(self, capsys):
        code = main(["decode-uri", f"tc://?v=2&id=42&r={quote(PAYLOAD, safe='')}"])

        assert code == 0
        output = json.loads(capsys.readouterr().out)
        assert output["request_id"] == "42"
        assert output["manifest_url"] == "https://x.example/m.json"

    def test_decode_uri_invalid(self, capsys):
        assert main(["decode-uri", "hello"]) == 1
        assert "Not a valid connection request" in capsys.readouterr().err

    def test_balance(self, capsys):
        with patch.object(BalanceService, "get_balance", AsyncMock(return_value="1500000000")):
            code = main(["balance", ZERO_FRIENDLY])

        assert code == 0
        assert capsys.readouterr().out.strip() == "1.5 TON (1500000000 nanoton)"

    def test_error_is_user_friendly(self, capsys):
        with patch.object(
            BalanceService, "get_jetton_holdings", AsyncMock(side_effect=NetworkError("offline"))
        ):
            code = main(["tokens", ZERO_FRIENDLY])

        assert code == 1
        assert "Unable to connect to the network" in capsys.readouterr().err


class TestTelegramLinkOpener:
    """Tests for opening links through the bot."""

    @pytest.mark.asyncio
    async def test_sends_url_button(self):
        from tonpocket.notifications.telegram import TelegramLinkOpener

        mock_bot = AsyncMock()
        mock_bot.send_message = AsyncMock(return_value=True)

        opener = TelegramLinkOpener(chat_id=123456789, bot=mock_bot, button_text="Return")
        await opener.open_link("https://x.example/tonconnect/callback?result=%7B%7D")

        mock_bot.send_message.assert_called_once()
        call_args = mock_bot.send_message.call_args
        assert call_args.kwargs["chat_id"] == 123456789
        button = call_args.kwargs["reply_markup"].inline_keyboard[0][0]
        assert button.text == "Return"
        assert button.url == "https://x.example/tonconnect/callback?result=%7B%7D"

    @pytest.mark.asyncio
    async def test_blocked_user(self):
        from aiogram.exceptions import TelegramForbiddenError
        from tonpocket.notifications.telegram import TelegramLinkOpener

        mock_bot = AsyncMock()
        mock_bot.send_message = AsyncMock(
            side_effect=TelegramForbiddenError(
                method=MagicMock(),
                message="Forbidden: bot was blocked by the user",
            )
        )

        opener = TelegramLinkOpener(chat_id=123456789, bot=mock_bot)

        with pytest.raises(RuntimeError, match="blocked"):
            await opener.open_link("https://x.example/")

    @pytest.mark.asyncio
    async def test_no_bot_configured(self):
        from tonpocket.notifications.telegram import TelegramLinkOpener

        opener = TelegramLinkOpener(chat_id=1, bot=None)

        with patch("tonpocket.notifications.telegram.get_bot", return_value=None):
            with pytest.raises(RuntimeError, match="not initialized"):
                await opener.open_link("https://x.example/")

    @pytest.mark.asyncio
    async def test_no_chat_configured(self):
        from tonpocket.notifications.telegram import TelegramLinkOpener

        opener = TelegramLinkOpener(chat_id=None, bot=AsyncMock())
        opener.chat_id = None

        with pytest.raises(RuntimeError, match="chat id"):
            await opener.open_link("https://x.example/")
