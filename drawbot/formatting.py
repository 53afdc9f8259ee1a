from __future__ import annotations

import html
from typing import Iterable, List, Sequence

from .models import Candidate, HistoryRecord

MAX_CHUNK = 3500


def escape_html(text) -> str:
    return html.escape(str(text), quote=True)


def format_user_link(user: Candidate) -> str:
    """``@username`` link when there is one, otherwise a ``tg://user`` id link."""
    uid = escape_html(user.user_id)
    name = escape_html(user.full_name) if user.full_name else ""
    if user.username:
        uname = escape_html(user.username)
        return f'<a href="https://t.me/{uname}">@{uname}</a>'
    suffix = f" ({name})" if name else ""
    return f'<a href="tg://user?id={uid}">id:{uid}</a>{suffix}'


def numbered_users(users: Sequence[Candidate], start: int = 1) -> List[str]:
    return [f"{i}. {format_user_link(u)}" for i, u in enumerate(users, start=start)]


def chunk_lines(lines: Iterable[str], max_len: int = MAX_CHUNK) -> List[str]:
    """Join lines into newline-separated chunks no longer than ``max_len``."""
    chunks: List[str] = []
    current: List[str] = []
    size = 0
    for line in lines:
        if current and size + len(line) + 1 > max_len:
            chunks.append("\n".join(current))
            current = []
            size = 0
        current.append(line)
        size += len(line) + 1
    if current:
        chunks.append("\n".join(current))
    return chunks


def winners_text(winners: Sequence[Candidate]) -> str:
    if not winners:
        return "Не было участников. Победителей нет."
    return "\n".join(numbered_users(winners))


def history_text(record: HistoryRecord, tz) -> str:
    done = record.completed_at.astimezone(tz)
    head = (
        f"<b>{done:%Y-%m-%d %H:%M}</b> • пост {record.message_ref or '-'} • "
        f"участников: {record.entry_count} • мест: {record.winners_count}"
    )
    excerpt = escape_html(record.text[:80] + ("…" if len(record.text) > 80 else ""))
    return f"{head}\n<i>{excerpt}</i>\n{winners_text(record.winners)}"
