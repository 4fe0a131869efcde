"""
Booking notifications for salon admins.

The engine only calls ``booking_confirmed`` and ``booking_cancelled``; what
happens with them depends on the configured notifier.
"""

import html
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from models.booking import Booking
from utils.logging_config import get_logger

logger = get_logger(__name__)


class Notifier(ABC):
    """Outbound booking events."""

    @abstractmethod
    async def booking_confirmed(self, booking: Booking) -> None:
        ...

    @abstractmethod
    async def booking_cancelled(self, booking: Booking) -> None:
        ...

    async def close(self) -> None:
        """Release any held connections."""


class LoggingNotifier(Notifier):
    """Writes booking events to the application log."""

    async def booking_confirmed(self, booking: Booking) -> None:
        logger.info(
            f"Booking {booking.booking_id} confirmed "
            f"({booking.service_type}, slots: {', '.join(booking.chain)})"
        )

    async def booking_cancelled(self, booking: Booking) -> None:
        logger.info(f"Booking {booking.booking_id} cancelled")


def format_booking_message(booking: Booking, headline: str) -> str:
    customer_name = booking.customer_data.get("name") or booking.customer_data.get(
        "Name", "-"
    )
    # Form input is untrusted and the message is sent in HTML parse mode
    customer_name = html.escape(str(customer_name))
    return (
        f"{headline}\n\n"
        f"<b>Booking:</b> {booking.booking_id}\n"
        f"<b>Service:</b> {booking.service_type}\n"
        f"<b>Customer:</b> {customer_name}\n"
        f"<b>Slots:</b> {len(booking.chain)}"
    )


class TelegramNotifier(Notifier):
    """Sends booking events to the admin Telegram chats."""

    def __init__(self, bot: Bot, admin_chat_ids: Iterable[int]):
        self.bot = bot
        self.admin_chat_ids: List[int] = list(admin_chat_ids)

    async def booking_confirmed(self, booking: Booking) -> None:
        await self._broadcast(format_booking_message(booking, "✅ Booking confirmed"))

    async def booking_cancelled(self, booking: Booking) -> None:
        await self._broadcast(format_booking_message(booking, "❌ Booking cancelled"))

    async def _broadcast(self, text: str) -> None:
        for chat_id in self.admin_chat_ids:
            try:
                await self.bot.send_message(chat_id, text)
            except Exception as e:
                logger.error(
                    f"Failed to notify admin chat {chat_id}: {e}", exc_info=True
                )

    async def close(self) -> None:
        await self.bot.session.close()


def create_notifier(
    bot_token: Optional[str], admin_chat_ids: Iterable[int]
) -> Notifier:
    """Telegram notifier when a bot token and admin chats are configured."""
    chat_ids = list(admin_chat_ids)
    if bot_token and chat_ids:
        bot = Bot(
            token=bot_token,
            default=DefaultBotProperties(parse_mode=ParseMode.HTML),
        )
        logger.info(f"Telegram notifications enabled for {len(chat_ids)} chat(s)")
        return TelegramNotifier(bot, chat_ids)
    logger.info("Telegram notifications disabled, logging booking events only")
    return LoggingNotifier()
