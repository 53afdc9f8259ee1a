"""Where the giveaway post lives and how its button is kept up to date."""

from __future__ import annotations

from typing import Optional, Sequence

from aiogram import Bot
from aiogram.types import InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from .formatting import winners_text
from .models import Candidate

JOIN_PREFIX = "gwj"
CLOSED_CALLBACK = "gwclosed"

JOIN_FOOTER = "\n\nНажмите кнопку ниже, чтобы участвовать:"


def join_label(count: int) -> str:
    return f"✅ Участвовать ({count})" if count else "✅ Участвовать"


def closed_label(count: int) -> str:
    return f"🔒 Розыгрыш завершён • участников: {count}"


def results_text(winners: Sequence[Candidate]) -> str:
    return f"<b>🎉 Итоги розыгрыша</b>\n\n{winners_text(winners)}"


def join_kb(giveaway_id: str, count: int = 0) -> InlineKeyboardMarkup:
    kb = InlineKeyboardBuilder()
    kb.button(text=join_label(count), callback_data=f"{JOIN_PREFIX}:{giveaway_id}")
    return kb.as_markup()


def closed_kb(count: int) -> InlineKeyboardMarkup:
    kb = InlineKeyboardBuilder()
    kb.button(text=closed_label(count), callback_data=CLOSED_CALLBACK)
    return kb.as_markup()


class BotAnnouncer:
    """Posts through the Bot API; the bot must be an admin of the channel."""

    def __init__(self, bot: Bot) -> None:
        self.bot = bot

    async def publish(self, giveaway_id: str, channel: str, text: str) -> int:
        sent = await self.bot.send_message(
            chat_id=channel,
            text=text + JOIN_FOOTER,
            reply_markup=join_kb(giveaway_id),
            disable_web_page_preview=True,
        )
        return sent.message_id

    async def update_entry_count(self, giveaway_id: str, channel: str, message_ref: int, count: int) -> None:
        await self.bot.edit_message_reply_markup(
            chat_id=channel,
            message_id=message_ref,
            reply_markup=join_kb(giveaway_id, count),
        )

    async def lock(self, channel: str, message_ref: int, count: int) -> None:
        await self.bot.edit_message_reply_markup(
            chat_id=channel,
            message_id=message_ref,
            reply_markup=closed_kb(count),
        )

    async def publish_results(self, channel: str, message_ref: Optional[int], winners: Sequence[Candidate]) -> None:
        await self.bot.send_message(
            chat_id=channel,
            text=results_text(winners),
            reply_to_message_id=message_ref,
            disable_web_page_preview=True,
        )


class ProxyAnnouncer:
    """Posts from the MProxy user account; entries come in via a bot deep link.

    Useful when the bot itself cannot be made an admin of the channel.
    """

    def __init__(self, mproxy, bot_username: str) -> None:
        self.mproxy = mproxy
        self.bot_username = bot_username

    def join_url(self, giveaway_id: str) -> str:
        return f"https://t.me/{self.bot_username}?start={JOIN_PREFIX}-{giveaway_id}"

    @staticmethod
    def post_url(channel: str, message_ref: Optional[int]) -> Optional[str]:
        if message_ref and channel.startswith("@"):
            return f"https://t.me/{channel[1:]}/{message_ref}"
        return None

    async def publish(self, giveaway_id: str, channel: str, text: str) -> int:
        data = await self.mproxy.post_message(
            channel,
            text=text + JOIN_FOOTER,
            button_text=join_label(0),
            url=self.join_url(giveaway_id),
        )
        return int(data["message_id"])

    async def update_entry_count(self, giveaway_id: str, channel: str, message_ref: int, count: int) -> None:
        await self.mproxy.edit_button(
            channel,
            message_id=message_ref,
            button_text=join_label(count),
            url=self.join_url(giveaway_id),
        )

    async def lock(self, channel: str, message_ref: int, count: int) -> None:
        await self.mproxy.edit_button(channel, message_id=message_ref, button_text=closed_label(count), url=None)

    async def publish_results(self, channel: str, message_ref: Optional[int], winners: Sequence[Candidate]) -> None:
        url = self.post_url(channel, message_ref) or f"https://t.me/{self.bot_username}"
        await self.mproxy.post_message(channel, text=results_text(winners), button_text="📜 Пост розыгрыша", url=url)
