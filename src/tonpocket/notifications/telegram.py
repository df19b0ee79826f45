"""Telegram host integration.

The wallet runs inside a Telegram mini-app, which cannot POST to arbitrary
origins. Outbound links (TON Connect responses) are handed to the user as
an inline URL button sent by the bot. Uses a singleton pattern to share the
bot instance.
"""

import asyncio
import logging
from typing import Optional

from aiogram import Bot
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from tonpocket.config import get_settings
from tonpocket.connect.session import LinkOpener

logger = logging.getLogger(__name__)

# Singleton bot instance
_bot_instance: Optional[Bot] = None
_bot_lock = asyncio.Lock()


async def get_bot() -> Optional[Bot]:
    """Get or create the bot instance."""
    global _bot_instance

    if _bot_instance is not None:
        return _bot_instance

    async with _bot_lock:
        # Double-check after acquiring lock
        if _bot_instance is not None:
            return _bot_instance

        settings = get_settings()
        if not settings.telegram_bot_token:
            logger.warning("Telegram bot token not configured - link opening disabled")
            return None

        _bot_instance = Bot(token=settings.telegram_bot_token)
        return _bot_instance


async def close_bot() -> None:
    """Close the bot session (call on shutdown)."""
    global _bot_instance
    if _bot_instance is not None:
        await _bot_instance.session.close()
        _bot_instance = None


class TelegramLinkOpener(LinkOpener):
    """Opens links by sending the user an inline URL button."""

    def __init__(
        self,
        chat_id: Optional[int] = None,
        bot: Optional[Bot] = None,
        text: str = "Tap to return to the app and finish connecting.",
        button_text: str = "Open",
    ):
        """Initialize the opener.

        Args:
            chat_id: Chat that receives the button (defaults to settings)
            bot: Bot instance; the shared singleton is used if omitted
            text: Message shown above the button
            button_text: Button label
        """
        self.chat_id = chat_id if chat_id is not None else get_settings().telegram_chat_id
        self._bot = bot
        self.text = text
        self.button_text = button_text

    async def _get_bot(self) -> Optional[Bot]:
        if self._bot:
            return self._bot
        return await get_bot()

    async def open_link(self, url: str) -> None:
        """Send ``url`` as a button.

        Raises:
            RuntimeError: bot or chat not configured, or Telegram refused
        """
        bot = await self._get_bot()
        if not bot:
            raise RuntimeError("Telegram bot not initialized")
        if self.chat_id is None:
            raise RuntimeError("Telegram chat id not configured")

        keyboard = InlineKeyboardMarkup(
            inline_keyboard=[[InlineKeyboardButton(text=self.button_text, url=url)]]
        )
        try:
            await bot.send_message(chat_id=self.chat_id, text=self.text, reply_markup=keyboard)
        except TelegramForbiddenError as e:
            logger.warning(f"Chat {self.chat_id} has blocked the bot")
            raise RuntimeError("User has blocked the bot") from e
        except TelegramBadRequest as e:
            logger.error(f"Bad request opening link in {self.chat_id}: {e}")
            raise RuntimeError(f"Telegram rejected the link: {e}") from e

        logger.info(f"Link dispatched to chat {self.chat_id}")
