"""Milestone alert delivery over Telegram."""

import asyncio
import logging
from datetime import timezone
from html import escape

import config
from telegram import Bot
from telegram.error import TelegramError

from monitor.errors import ConfigurationError, NotificationError
from monitor.models import Group, MilestoneConfig, Token, group_settings

logger = logging.getLogger(__name__)


def format_usd(amount: float) -> str:
    value = float(amount or 0.0)
    if value >= 1_000_000_000:
        return f"{value / 1_000_000_000:.2f}B"
    if value >= 1_000_000:
        return f"{value / 1_000_000:.2f}M"
    if value >= 1_000:
        return f"{value / 1_000:.2f}K"
    return f"{value:.2f}"


def format_milestone_message(token: Token, milestone: MilestoneConfig, current_cap: float, group: Group) -> str:
    settings = group_settings(group)
    initial = float(token.initial_market_cap_usd or 0.0)
    multiple = (float(current_cap) / initial) if initial > 0 else 0.0
    called_at = token.first_called_at_utc
    if called_at.tzinfo is None:
        called_at = called_at.replace(tzinfo=timezone.utc)

    return (
        f"\U0001F6A8 <b>{escape(token.symbol)}</b> hit <b>{escape(milestone.milestone_label)}</b> market cap since call-out!\n"
        f"<i>{escape(settings.title)}</i>\n\n"
        f"Initial MC: ${format_usd(initial)}\n"
        f"Current MC: ${format_usd(current_cap)} ({multiple:.2f}x)\n"
        f"Called: {called_at.strftime('%Y-%m-%d %H:%M UTC')}\n"
        f"Address: <code>{escape(token.token_address)}</code>\n\n"
        "⏫ Still moving, watch closely."
    )


class TelegramNotifier:
    def __init__(
        self,
        bot: Bot | None = None,
        max_attempts: int | None = None,
        retry_delay_seconds: float | None = None,
    ) -> None:
        if bot is None:
            if not config.TELEGRAM_BOT_TOKEN:
                raise ConfigurationError("TELEGRAM_BOT_TOKEN is not set")
            bot = Bot(token=config.TELEGRAM_BOT_TOKEN)
        self.bot = bot
        self.max_attempts = max(1, int(max_attempts or config.TELEGRAM_SEND_ATTEMPTS))
        self.retry_delay_seconds = float(
            retry_delay_seconds if retry_delay_seconds is not None else config.TELEGRAM_RETRY_DELAY_SECONDS
        )

    async def start(self) -> None:
        await self.bot.initialize()

    async def close(self) -> None:
        await self.bot.shutdown()

    async def send(self, group: Group, message: str) -> None:
        settings = group_settings(group)
        if not settings.chat_id:
            raise NotificationError("telegram", f"no chat configured for group {Group(group).value}")

        last_exc: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.bot.send_message(
                    chat_id=settings.chat_id,
                    text=message,
                    parse_mode="HTML",
                    message_thread_id=settings.thread_id,
                    disable_web_page_preview=True,
                )
                return
            except (TelegramError, OSError) as exc:
                last_exc = exc
                logger.warning(
                    "TELEGRAM_SEND_RETRY group=%s chat_id=%s attempt=%s/%s err=%s",
                    Group(group).value,
                    settings.chat_id,
                    attempt,
                    self.max_attempts,
                    exc,
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay_seconds * (2 ** (attempt - 1)))

        raise NotificationError(
            "telegram",
            f"send failed after {self.max_attempts} attempts: {last_exc}",
            group=Group(group).value,
        )

    async def health_check(self) -> bool:
        try:
            me = await self.bot.get_me()
        except (TelegramError, OSError) as exc:
            logger.warning("Telegram health check failed: %s", exc)
            return False
        return me is not None
