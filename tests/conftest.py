from __future__ import annotations

import random
from typing import Iterable, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from drawbot.history import HistoryLog
from drawbot.lifecycle import GiveawayController
from drawbot.models import Candidate
from drawbot.registry import GiveawayRegistry
from drawbot.tokens import EphemeralStore


def make_user(uid, username: Optional[str] = None, *, is_bot: bool = False, first_name: Optional[str] = None) -> Candidate:
    return Candidate(user_id=str(uid), username=username, first_name=first_name or f"User{uid}", is_bot=is_bot)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAnnouncer:
    def __init__(self, message_id: int = 101) -> None:
        self.publish = AsyncMock(return_value=message_id)
        self.update_entry_count = AsyncMock(return_value=None)
        self.lock = AsyncMock(return_value=None)
        self.publish_results = AsyncMock(return_value=None)


class FakeScheduler:
    """Records deferred jobs; tests fire them by hand."""

    def __init__(self) -> None:
        self.jobs = {}

    def run_at(self, job_id, when, func, *args):
        self.jobs[job_id] = (when, func, args)
        return MagicMock(cancel=MagicMock(return_value=True))

    async def fire(self, job_id):
        _, func, args = self.jobs[job_id]
        return await func(*args)


class FakeMProxy:
    def __init__(
        self,
        members: Iterable[Candidate] = (),
        admins: Iterable[Candidate] = (),
        me: Optional[Candidate] = None,
        *,
        admins_error: Optional[Exception] = None,
        me_error: Optional[Exception] = None,
    ) -> None:
        self.members: List[Candidate] = list(members)
        self.admins: List[Candidate] = list(admins)
        self._me = me
        self.admins_error = admins_error
        self.me_error = me_error
        self.member_of = set()
        self.joined: List[str] = []
        self.sent = []

    def is_enabled(self) -> bool:
        return True

    async def fetch_all_members(self, channel, *, page_size=200, hard_max=20000):
        return list(self.members)

    async def fetch_admins(self, channel):
        if self.admins_error:
            raise self.admins_error
        return list(self.admins)

    async def me(self):
        if self.me_error:
            raise self.me_error
        return self._me

    async def is_member(self, target):
        return target in self.member_of

    async def join_target(self, target):
        self.joined.append(target)
        self.member_of.add(target)
        return {"ok": True}

    async def send_messages(self, recipients, text):
        recipients = list(recipients)
        self.sent.append((recipients, text))
        return {"sent": len(recipients), "total": len(recipients)}


@pytest.fixture
def rng():
    return random.Random(20240601)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def announcer():
    return FakeAnnouncer()


@pytest.fixture
def fake_scheduler():
    return FakeScheduler()


@pytest_asyncio.fixture
async def history(tmp_path):
    log = HistoryLog(str(tmp_path / "history.db"))
    await log.init()
    return log


@pytest.fixture
def controller(history, announcer, fake_scheduler, clock, rng):
    return GiveawayController(
        GiveawayRegistry(),
        EphemeralStore(clock=clock),
        history,
        announcer,
        fake_scheduler,
        FakeMProxy(),
        rng=rng,
    )
