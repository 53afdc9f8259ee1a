from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Optional, Set

import pytz
from aiogram import Bot, F, Router
from aiogram.filters import Command, CommandObject
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import CallbackQuery, InlineKeyboardMarkup, Message
from aiogram.utils.keyboard import InlineKeyboardBuilder

from .announce import CLOSED_CALLBACK, JOIN_PREFIX
from .config import Settings
from .draw import ensure_client_joined, run_direct_draw
from .errors import DrawError, ProxyError
from .formatting import chunk_lines, escape_html, history_text, numbered_users, winners_text
from .lifecycle import FinalizeResult, GiveawayController
from .models import Candidate

logger = logging.getLogger(__name__)

router = Router(name="drawbot")

HISTORY_PAGE = 5
MANUAL_WORDS = {"-", "вручную", "manual"}


# ========= FSM =========
class DrawFlow(StatesGroup):
    target = State()
    winners = State()


class MembersFlow(StatesGroup):
    target = State()


class PostFlow(StatesGroup):
    channel = State()
    winners = State()
    text = State()
    finalize_at = State()


class SendFlow(StatesGroup):
    text = State()


# ========= Keyboards =========
def main_menu_kb() -> InlineKeyboardMarkup:
    kb = InlineKeyboardBuilder()
    kb.button(text="👥 Список участников", callback_data="menu:members")
    kb.button(text="🎁 Розыгрыш", callback_data="menu:draw")
    kb.button(text="📣 Розыгрыш по посту", callback_data="menu:post")
    kb.button(text="📋 Активные", callback_data="menu:active")
    kb.adjust(2, 1, 1)
    return kb.as_markup()


def back_kb() -> InlineKeyboardMarkup:
    kb = InlineKeyboardBuilder()
    kb.button(text="⬅️ В меню", callback_data="menu:main")
    return kb.as_markup()


def winners_kb(token: str) -> InlineKeyboardMarkup:
    kb = InlineKeyboardBuilder()
    kb.button(text="✉️ Написать победителям", callback_data=f"msg_winners:{token}")
    return kb.as_markup()


def finish_kb(token: str) -> InlineKeyboardMarkup:
    kb = InlineKeyboardBuilder()
    kb.button(text="🎉 Завершить розыгрыш", callback_data=f"gwe:{token}")
    return kb.as_markup()


# ========= Helpers =========
def parse_winners(text: str) -> Optional[int]:
    found = re.findall(r"\d+", text or "")
    if not found:
        return None
    value = int(found[0])
    return value if value >= 1 else None


def parse_deadline(text: str, tz) -> Optional[datetime]:
    """Operator deadline -> aware UTC datetime; ``None`` means finish manually.

    Accepts ``YYYY-MM-DD HH:MM`` in ``tz`` or ISO 8601 (``Z`` allowed).
    Raises ``ValueError`` on anything else.
    """
    s = (text or "").strip()
    if s.lower() in MANUAL_WORDS:
        return None
    if "T" in s:
        value = datetime.fromisoformat(s.replace("Z", "+00:00"))
        if value.tzinfo is None:
            value = tz.localize(value)
    else:
        value = tz.localize(datetime.strptime(s, "%Y-%m-%d %H:%M"))
    return value.astimezone(pytz.utc)


def error_text(e: DrawError) -> str:
    prefix = "Ошибка MProxy" if isinstance(e, ProxyError) else "Ошибка"
    return escape_html(f"{prefix}: {e.describe()}")


async def answer_chunked(m: Message, lines) -> None:
    for chunk in chunk_lines(lines):
        await m.answer(chunk, disable_web_page_preview=True)


async def show_main_menu(m: Message, state: FSMContext, text: str = "Главное меню") -> None:
    await state.clear()
    await m.answer(text, reply_markup=main_menu_kb())


async def send_finalize_report(bot: Bot, chat_id: int, result: FinalizeResult) -> None:
    """Tell the operator how a finalize went and offer to message the winners."""
    g = result.giveaway
    lines = [
        f"Розыгрыш <code>{g.id}</code> в {escape_html(g.channel)} завершён.",
        f"Участников: {len(g.entries)}",
        "",
        "Победители:",
        winners_text(result.winners),
    ]
    for effect in result.warnings:
        lines.append(f"⚠️ {escape_html(effect.name)}: {escape_html(effect.error or 'ошибка')}")
    await bot.send_message(
        chat_id,
        "\n".join(lines),
        reply_markup=winners_kb(result.winners_token) if result.winners else None,
        disable_web_page_preview=True,
    )


async def _join_giveaway(controller: GiveawayController, giveaway_id: str, user) -> str:
    candidate = Candidate.from_user(user)
    try:
        total = await controller.register_entry(giveaway_id, candidate)
    except DrawError:
        return "Розыгрыш не найден или завершён"
    return f"Вы участвуете! Всего участников: {total}"


# ========= Commands =========
@router.message(Command("start"))
async def cmd_start(m: Message, command: CommandObject, state: FSMContext, controller: GiveawayController):
    # deep link from a post published by the MProxy account
    if command.args:
        mobj = re.match(rf"{JOIN_PREFIX}-([0-9a-f]+)$", command.args)
        if mobj:
            return await m.answer(await _join_giveaway(controller, mobj.group(1), m.from_user))

    await show_main_menu(
        m,
        state,
        "👋 <b>Привет!</b> Я помогу собрать участников и провести розыгрыш.\n\n"
        "1) «👥 Список участников» — укажите <b>username группы</b>, я покажу полный список.\n"
        "2) «🎁 Розыгрыш» — укажите группу и <b>количество победителей</b>.\n"
        "3) «📣 Розыгрыш по посту» — опубликую пост с кнопкой «Участвовать».\n\n"
        "Команды: <code>/draw @group N</code>, <code>/history @group</code>, <code>/finish ID</code>.\n"
        "ℹ️ Используйте <b>группу/обсуждение</b>, а не канал-трансляцию.",
    )


@router.message(Command("ping"))
async def cmd_ping(m: Message):
    await m.answer("pong")


@router.message(Command("cancel"))
async def cmd_cancel(m: Message, state: FSMContext):
    await show_main_menu(m, state, "Отменено.")


@router.message(Command("draw"))
async def cmd_draw(m: Message, command: CommandObject, mproxy, excluded_usernames: Set[str]):
    if not mproxy.is_enabled():
        return await m.answer("MTProto недоступен: не настроен MProxy.")
    parts = (command.args or "").split()
    if len(parts) < 2:
        return await m.answer("Использование: /draw &lt;@channel|id&gt; &lt;кол-во_победителей&gt;")
    channel = parts[0]
    winners_count = parse_winners(parts[1]) or 1
    try:
        await _connect_client(m, mproxy, channel)
        await m.answer(f"Собираю участников {escape_html(channel)}...")
        winners = await run_direct_draw(mproxy, channel, winners_count, excluded_usernames)
    except DrawError as e:
        return await m.answer(error_text(e))
    await m.answer("Победители:\n" + "\n".join(numbered_users(winners)), disable_web_page_preview=True)


@router.message(Command("whois"))
async def cmd_whois(m: Message, command: CommandObject):
    arg = (command.args or "").strip()
    if not arg:
        return await m.answer("Использование: /whois &lt;user_id|@username&gt;")
    if arg.startswith("@"):
        uname = escape_html(arg[1:])
        return await m.answer(f'Профиль: <a href="https://t.me/{uname}">@{uname}</a>', disable_web_page_preview=True)
    uid = re.sub(r"[^0-9]", "", arg)
    if not uid:
        return await m.answer("Некорректный id")
    await m.answer(f'Профиль: <a href="tg://user?id={uid}">id:{uid}</a>', disable_web_page_preview=True)


@router.message(Command("history"))
async def cmd_history(m: Message, command: CommandObject, controller: GiveawayController, settings: Settings):
    parts = (command.args or "").split()
    if not parts:
        return await m.answer("Использование: /history &lt;@channel&gt; [страница]")
    channel = parts[0]
    page = max(parse_winners(parts[1]) or 1, 1) if len(parts) > 1 else 1
    result = await controller.query_history(channel, limit=HISTORY_PAGE, offset=(page - 1) * HISTORY_PAGE)
    if not result.records:
        return await m.answer("История пуста." if page == 1 else "На этой странице ничего нет.")
    pages = (result.total_count + HISTORY_PAGE - 1) // HISTORY_PAGE
    lines = [f"<b>История {escape_html(channel)}</b> — страница {page}/{pages}, всего {result.total_count}", ""]
    lines.extend(history_text(r, settings.tz) + "\n" for r in result.records)
    await answer_chunked(m, lines)


@router.message(Command("finish"))
async def cmd_finish(m: Message, command: CommandObject, bot: Bot, controller: GiveawayController):
    gid = (command.args or "").strip()
    if not gid:
        return await m.answer("Использование: /finish &lt;ID&gt;")
    g = controller.registry.get(gid)
    if g is not None and g.created_by not in (None, m.from_user.id):
        return await m.answer("Завершить розыгрыш может только его автор.")
    try:
        result = await controller.finalize_giveaway(gid)
    except DrawError as e:
        return await m.answer(error_text(e))
    await send_finalize_report(bot, m.chat.id, result)


# ========= Menu =========
@router.callback_query(F.data == "menu:main")
async def menu_main(c: CallbackQuery, state: FSMContext):
    await c.answer()
    await show_main_menu(c.message, state)


@router.callback_query(F.data == "menu:members")
async def menu_members(c: CallbackQuery, state: FSMContext, mproxy):
    await c.answer()
    if not mproxy.is_enabled():
        return await c.message.answer("MTProto недоступен: не настроен MProxy.")
    await state.set_state(MembersFlow.target)
    await c.message.answer(
        "Шаг 1. Введите username группы. Я добавлю нашего клиента и загружу всех участников.",
        reply_markup=back_kb(),
    )


@router.callback_query(F.data == "menu:draw")
async def menu_draw(c: CallbackQuery, state: FSMContext, mproxy):
    await c.answer()
    if not mproxy.is_enabled():
        return await c.message.answer("MTProto недоступен: не настроен MProxy.")
    await state.set_state(DrawFlow.target)
    await c.message.answer(
        "Шаг 1. Введите username группы. Подключу клиента и затем попрошу число победителей.",
        reply_markup=back_kb(),
    )


@router.callback_query(F.data == "menu:post")
async def menu_post(c: CallbackQuery, state: FSMContext, settings: Settings):
    await c.answer()
    if not settings.enable_post_giveaway:
        return await c.message.answer("Розыгрыш по посту временно отключён.")
    await state.set_state(PostFlow.channel)
    await c.message.answer(
        "Шаг 1. Введите username канала/группы, где опубликовать пост розыгрыша.",
        reply_markup=back_kb(),
    )


@router.callback_query(F.data == "menu:active")
async def menu_active(c: CallbackQuery, controller: GiveawayController, settings: Settings):
    mine = [g for g in controller.active_giveaways() if g.created_by == c.from_user.id]
    if not mine:
        return await c.answer("Активных розыгрышей нет.", show_alert=True)
    await c.answer()
    lines = []
    for g in mine:
        when = (
            f"до {g.scheduled_at.astimezone(settings.tz):%Y-%m-%d %H:%M} {settings.default_tz}"
            if g.scheduled_at
            else "вручную"
        )
        lines.append(f"<code>{g.id}</code> • {escape_html(g.channel)} • участников: {g.entry_count} • {when}")
    await c.message.answer("\n".join(lines), reply_markup=main_menu_kb())


# ========= Members / direct draw =========
async def _connect_client(m: Message, mproxy, target: str) -> None:
    await m.answer("Проверяю подключение клиента...")
    if await ensure_client_joined(mproxy, target):
        await m.answer("Клиент добавлен в группу.")


@router.message(MembersFlow.target, F.text)
async def members_target(m: Message, state: FSMContext, mproxy):
    channel = m.text.strip()
    try:
        await _connect_client(m, mproxy, channel)
        await m.answer(f"Загружаю всех участников {escape_html(channel)}...")
        members = await mproxy.fetch_all_members(channel, page_size=500, hard_max=100000)
    except DrawError as e:
        await m.answer(error_text(e))
        return await show_main_menu(m, state)
    if not members:
        await m.answer("Участники не найдены.")
    else:
        await answer_chunked(m, numbered_users(members))
    await show_main_menu(m, state, "Готово.")


@router.message(DrawFlow.target, F.text)
async def draw_target(m: Message, state: FSMContext, mproxy):
    channel = m.text.strip()
    try:
        await _connect_client(m, mproxy, channel)
    except DrawError as e:
        await m.answer(error_text(e))
        return await show_main_menu(m, state)
    await state.update_data(channel=channel)
    await state.set_state(DrawFlow.winners)
    await m.answer("Шаг 2/2. Укажите количество победителей (число).", reply_markup=back_kb())


@router.message(DrawFlow.winners, F.text)
async def draw_winners(
    m: Message,
    state: FSMContext,
    mproxy,
    excluded_usernames: Set[str],
    controller: GiveawayController,
):
    winners_count = parse_winners(m.text)
    if winners_count is None:
        return await m.answer("Введите целое число ≥ 1")
    channel = (await state.get_data())["channel"]
    await state.clear()
    await m.answer(f"Собираю участников {escape_html(channel)}...")
    try:
        winners = await run_direct_draw(mproxy, channel, winners_count, excluded_usernames)
    except DrawError as e:
        return await m.answer(error_text(e), reply_markup=main_menu_kb())
    token = controller.tokens.put([w.user_id for w in winners], ttl=controller.winners_token_ttl)
    await m.answer(
        "Победители:\n" + "\n".join(numbered_users(winners)),
        reply_markup=winners_kb(token),
        disable_web_page_preview=True,
    )


# ========= Post-based giveaway wizard =========
@router.message(PostFlow.channel, F.text)
async def post_channel(m: Message, state: FSMContext):
    await state.update_data(channel=m.text.strip())
    await state.set_state(PostFlow.winners)
    await m.answer("Шаг 2. Укажите количество победителей (число).")


@router.message(PostFlow.winners, F.text)
async def post_winners(m: Message, state: FSMContext):
    winners_count = parse_winners(m.text)
    if winners_count is None:
        return await m.answer("Введите целое число ≥ 1")
    await state.update_data(winners_count=winners_count)
    await state.set_state(PostFlow.text)
    await m.answer("Шаг 3. Отправьте текст поста (он будет опубликован с кнопкой «Участвовать»).")


@router.message(PostFlow.text, F.text)
async def post_text(m: Message, state: FSMContext, settings: Settings):
    await state.update_data(text=m.html_text[:3500])
    await state.set_state(PostFlow.finalize_at)
    await m.answer(
        f"Шаг 4. Когда подвести итоги? <code>YYYY-MM-DD HH:MM</code> ({settings.default_tz}) "
        "или ISO, напр. <code>2025-08-10T19:00:00Z</code>.\n"
        "Отправьте «-», чтобы завершить вручную."
    )


@router.message(PostFlow.finalize_at, F.text)
async def post_finalize_at(m: Message, state: FSMContext, controller: GiveawayController, settings: Settings):
    try:
        finalize_at = parse_deadline(m.text, settings.tz)
    except ValueError:
        return await m.answer("Неверный формат. Используйте YYYY-MM-DD HH:MM (локально), ISO (UTC) или «-».")
    if finalize_at is not None and finalize_at <= datetime.now(timezone.utc):
        return await m.answer("Время уже прошло. Введите будущую дату.")

    data = await state.get_data()
    await state.clear()
    await m.answer("Публикую пост...")
    try:
        g = await controller.create_post_giveaway(
            data["channel"],
            data["text"],
            data["winners_count"],
            finalize_at=finalize_at,
            created_by=m.from_user.id,
        )
    except DrawError as e:
        return await m.answer(error_text(e), reply_markup=main_menu_kb())

    when = (
        f"Итоги будут подведены {finalize_at.astimezone(settings.tz):%Y-%m-%d %H:%M} {settings.default_tz}."
        if finalize_at
        else "Когда будете готовы — завершите розыгрыш."
    )
    await m.answer(
        f"Пост опубликован. ID: <code>{g.id}</code>\n{when}",
        reply_markup=finish_kb(controller.finish_token(g.id)),
    )


# ========= Giveaway buttons =========
@router.callback_query(F.data.startswith(f"{JOIN_PREFIX}:"))
async def cb_join(c: CallbackQuery, controller: GiveawayController):
    gid = c.data.split(":", 1)[1]
    reply = await _join_giveaway(controller, gid, c.from_user)
    await c.answer(reply, show_alert=reply.startswith("Розыгрыш"))


@router.callback_query(F.data == CLOSED_CALLBACK)
async def cb_closed(c: CallbackQuery):
    await c.answer("Розыгрыш завершён", show_alert=True)


@router.callback_query(F.data.startswith("gwe:"))
async def cb_finish(c: CallbackQuery, bot: Bot, controller: GiveawayController):
    await c.answer()
    token = c.data.split(":", 1)[1]
    try:
        result = await controller.finalize_by_token(token)
    except DrawError as e:
        return await c.message.answer(error_text(e))
    await send_finalize_report(bot, c.message.chat.id, result)


@router.callback_query(F.data.startswith("msg_winners:"))
async def cb_msg_winners(c: CallbackQuery, state: FSMContext, controller: GiveawayController, mproxy):
    await c.answer()
    if not mproxy.is_enabled():
        return await c.message.answer("MTProto недоступен: не настроен MProxy.")
    token = c.data.split(":", 1)[1]
    try:
        controller.winners_for_token(token)
    except DrawError as e:
        return await c.message.answer(error_text(e))
    await state.set_state(SendFlow.text)
    await state.update_data(token=token)
    await c.message.answer("Введите текст сообщения для победителей:", reply_markup=back_kb())


@router.message(SendFlow.text, F.text)
async def send_text(m: Message, state: FSMContext, controller: GiveawayController):
    token = (await state.get_data()).get("token", "")
    await m.answer("Отправляю сообщения победителям...")
    try:
        report = await controller.message_winners(token, m.text)
    except DrawError as e:
        await m.answer(error_text(e))
        return await show_main_menu(m, state)
    await m.answer(f"Отправлено: {report.sent}/{report.total}")
    await show_main_menu(m, state, "Готово.")
