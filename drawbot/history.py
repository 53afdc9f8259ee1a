from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import List

import aiosqlite

from .models import Candidate, HistoryPage, HistoryRecord

logger = logging.getLogger(__name__)

INIT_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS history (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    channel        TEXT NOT NULL,
    message_ref    INTEGER,
    winners_count  INTEGER NOT NULL,
    winners        TEXT NOT NULL,
    text           TEXT NOT NULL,
    completed_at   TEXT NOT NULL,
    giveaway_id    TEXT,
    created_by     INTEGER,
    entry_count    INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS history_channel_idx ON history (channel, id);
"""


def _row_to_record(row: aiosqlite.Row) -> HistoryRecord:
    completed = datetime.fromisoformat(row["completed_at"])
    if completed.tzinfo is None:
        completed = completed.replace(tzinfo=timezone.utc)
    return HistoryRecord(
        channel=row["channel"],
        message_ref=row["message_ref"],
        winners_count=row["winners_count"],
        winners=[Candidate.from_payload(w) for w in json.loads(row["winners"])],
        text=row["text"],
        completed_at=completed,
        giveaway_id=row["giveaway_id"],
        created_by=row["created_by"],
        entry_count=row["entry_count"],
    )


class HistoryLog:
    """Append-only log of completed giveaways in SQLite."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    async def init(self) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.executescript(INIT_SQL)
            await db.commit()

    async def append(self, record: HistoryRecord) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cur = await db.execute(
                "INSERT INTO history (channel, message_ref, winners_count, winners, text, completed_at, "
                "giveaway_id, created_by, entry_count) VALUES (?,?,?,?,?,?,?,?,?)",
                (
                    record.channel,
                    record.message_ref,
                    record.winners_count,
                    json.dumps([w.to_payload() for w in record.winners], ensure_ascii=False),
                    record.text,
                    record.completed_at.astimezone(timezone.utc).isoformat(),
                    record.giveaway_id,
                    record.created_by,
                    record.entry_count,
                ),
            )
            await db.commit()
            logger.info("History: recorded giveaway %s in %s (%d winners)", record.giveaway_id, record.channel, len(record.winners))
            return cur.lastrowid

    async def query(self, channel: str, limit: int = 5, offset: int = 0) -> HistoryPage:
        """Newest-first page of ``channel``'s records, skipping ``offset`` newest."""
        limit = max(int(limit), 0)
        offset = max(int(offset), 0)
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cur = await db.execute("SELECT COUNT(*) FROM history WHERE channel=?", (channel,))
            row = await cur.fetchone()
            total = int(row[0] if row and row[0] is not None else 0)

            cur = await db.execute(
                "SELECT * FROM history WHERE channel=? ORDER BY id DESC LIMIT ? OFFSET ?",
                (channel, limit, offset),
            )
            rows = await cur.fetchall()
        records: List[HistoryRecord] = [_row_to_record(r) for r in rows]
        return HistoryPage(records=records, total_count=total)
