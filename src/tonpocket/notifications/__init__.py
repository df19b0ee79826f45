"""Host integrations that reach the user outside the wallet UI."""

from tonpocket.notifications.telegram import TelegramLinkOpener, close_bot, get_bot

__all__ = ["TelegramLinkOpener", "close_bot", "get_bot"]
