"""Tests for the SQLite history log."""

from datetime import datetime, timedelta, timezone

import pytest

from drawbot.models import HistoryRecord
from tests.conftest import make_user


def _record(channel, n, winners=()):
    return HistoryRecord(
        channel=channel,
        message_ref=100 + n,
        winners_count=max(len(winners), 1),
        winners=list(winners),
        text=f"{channel}-{n}",
        completed_at=datetime(2025, 1, 1, tzinfo=timezone.utc) + timedelta(hours=n),
        giveaway_id=f"gid{n}",
        created_by=42,
        entry_count=n,
    )


class TestHistoryLog:
    @pytest.mark.asyncio
    async def test_pagination_newest_first(self, history):
        for n in range(7):
            await history.append(_record("@g", n))
        await history.append(_record("@other", 99))

        page = await history.query("@g", limit=5, offset=0)
        assert page.total_count == 7
        assert [r.text for r in page.records] == ["@g-6", "@g-5", "@g-4", "@g-3", "@g-2"]

        rest = await history.query("@g", limit=5, offset=5)
        assert rest.total_count == 7
        assert [r.text for r in rest.records] == ["@g-1", "@g-0"]

    @pytest.mark.asyncio
    async def test_round_trip(self, history):
        winners = [make_user(1, "alice"), make_user(2)]
        await history.append(_record("@g", 3, winners))
        (record,) = (await history.query("@g")).records
        assert record.winners == winners
        assert record.message_ref == 103
        assert record.giveaway_id == "gid3"
        assert record.entry_count == 3
        assert record.completed_at == datetime(2025, 1, 1, 3, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_unknown_channel(self, history):
        page = await history.query("@nobody")
        assert page.records == []
        assert page.total_count == 0

    @pytest.mark.asyncio
    async def test_negative_arguments_are_clamped(self, history):
        await history.append(_record("@g", 0))
        page = await history.query("@g", limit=-1, offset=-3)
        assert page.records == []
        assert page.total_count == 1
