from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .effects import SideEffect, best_effort, critical
from .errors import AlreadyFinishedError, EmptyPoolError, ProxyError, PublishError
from .history import HistoryLog
from .models import Candidate, Giveaway, HistoryPage, HistoryRecord
from .registry import GiveawayRegistry
from .sampler import pick_unique_random
from .scheduling import DrawScheduler, ScheduledTask
from .tokens import EphemeralStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FinalizeResult:
    giveaway: Giveaway
    winners: List[Candidate]
    winners_token: str
    results: SideEffect
    lock: SideEffect
    history: SideEffect

    @property
    def warnings(self) -> List[SideEffect]:
        return [e for e in (self.results, self.lock, self.history) if not e.ok]


@dataclass(frozen=True)
class SendReport:
    sent: int
    total: int


class GiveawayController:
    """Lifecycle of post-based giveaways: create, collect entries, finalize.

    Finalization, manual or timer-driven, starts by removing the giveaway
    from the registry. Whoever gets it back runs the draw; everyone else
    gets ``AlreadyFinishedError``. Entries that arrive after that point are
    rejected as not found, so the candidate pool is fixed before the first
    network call of the draw.
    """

    def __init__(
        self,
        registry: GiveawayRegistry,
        tokens: EphemeralStore,
        history: HistoryLog,
        announcer,
        scheduler: Optional[DrawScheduler] = None,
        mproxy=None,
        *,
        rng: Optional[random.Random] = None,
        winners_token_ttl: float = 10 * 60,
        finish_token_ttl: float = 24 * 60 * 60,
        on_finalized: Optional[Callable[[FinalizeResult], Awaitable[Any]]] = None,
    ) -> None:
        self.registry = registry
        self.tokens = tokens
        self.history = history
        self.announcer = announcer
        self.scheduler = scheduler
        self.mproxy = mproxy
        self.rng = rng
        self.winners_token_ttl = winners_token_ttl
        self.finish_token_ttl = finish_token_ttl
        self.on_finalized = on_finalized
        self._timers: Dict[str, ScheduledTask] = {}

    # ---- creation
    async def create_post_giveaway(
        self,
        channel: str,
        text: str,
        winners_count: int,
        finalize_at: Optional[datetime] = None,
        created_by: Optional[int] = None,
    ) -> Giveaway:
        if winners_count < 1:
            raise ValueError("winners_count must be positive")
        if finalize_at is not None and self.scheduler is None:
            raise RuntimeError("scheduled giveaways need a DrawScheduler")

        gid = self.registry.allocate_id()
        message_ref = await critical(
            self.announcer.publish(gid, channel, text),
            PublishError,
            "Не удалось опубликовать пост",
            operation="publish",
            channel=channel,
        )
        giveaway = self.registry.create(
            giveaway_id=gid,
            channel=channel,
            text=text,
            winners_count=winners_count,
            message_ref=message_ref,
            created_by=created_by,
            scheduled_at=finalize_at,
        )
        if finalize_at is not None:
            self._timers[gid] = self.scheduler.run_at(f"draw-{gid}", finalize_at, self.finalize_scheduled, gid)
        logger.info(
            "Giveaway %s created in %s (message %s, winners=%d, finalize_at=%s)",
            gid,
            channel,
            message_ref,
            winners_count,
            finalize_at.isoformat() if finalize_at else "manual",
        )
        return giveaway

    # ---- entries
    async def register_entry(self, giveaway_id: str, candidate: Candidate) -> int:
        count = self.registry.record_entry(giveaway_id, candidate)
        giveaway = self.registry.get(giveaway_id)
        if giveaway is not None and giveaway.message_ref is not None:
            await best_effort(
                f"entry counter for {giveaway_id}",
                self.announcer.update_entry_count(giveaway_id, giveaway.channel, giveaway.message_ref, giveaway.entry_count),
            )
        return count

    # ---- finalize
    async def finalize_giveaway(self, giveaway_id: str) -> FinalizeResult:
        giveaway = self.registry.remove(giveaway_id)
        if giveaway is None:
            raise AlreadyFinishedError("Розыгрыш уже завершён.", operation="finalize")
        timer = self._timers.pop(giveaway_id, None)
        if timer is not None:
            timer.cancel()

        pool = list(giveaway.entries.values())
        winners = pick_unique_random(pool, giveaway.winners_count, self.rng)
        logger.info("Giveaway %s: %d winners from %d entries", giveaway_id, len(winners), len(pool))

        results = await best_effort(
            f"results post for {giveaway_id}",
            self.announcer.publish_results(giveaway.channel, giveaway.message_ref, winners),
        )
        if giveaway.message_ref is not None:
            lock = await best_effort(
                f"lock announcement for {giveaway_id}",
                self.announcer.lock(giveaway.channel, giveaway.message_ref, len(pool)),
            )
        else:
            lock = SideEffect(name="lock announcement", ok=False, error="no announcement message")

        record = HistoryRecord(
            channel=giveaway.channel,
            message_ref=giveaway.message_ref,
            winners_count=giveaway.winners_count,
            winners=winners,
            text=giveaway.text,
            completed_at=datetime.now(timezone.utc),
            giveaway_id=giveaway.id,
            created_by=giveaway.created_by,
            entry_count=len(pool),
        )
        history = await best_effort(f"history for {giveaway_id}", self.history.append(record))

        token = self.tokens.put([w.user_id for w in winners], ttl=self.winners_token_ttl)
        return FinalizeResult(
            giveaway=giveaway,
            winners=winners,
            winners_token=token,
            results=results,
            lock=lock,
            history=history,
        )

    async def finalize_scheduled(self, giveaway_id: str) -> Optional[FinalizeResult]:
        try:
            result = await self.finalize_giveaway(giveaway_id)
        except AlreadyFinishedError:
            logger.info("Scheduled draw for %s skipped: already finished", giveaway_id)
            return None
        if self.on_finalized is not None:
            await best_effort(f"notify operator of {giveaway_id}", self.on_finalized(result))
        return result

    def finish_token(self, giveaway_id: str) -> str:
        return self.tokens.put({"giveaway_id": giveaway_id}, ttl=self.finish_token_ttl)

    async def finalize_by_token(self, token: str) -> FinalizeResult:
        data = self.tokens.require(token)
        return await self.finalize_giveaway(data["giveaway_id"])

    # ---- follow-ups
    def winners_for_token(self, token: str) -> List[str]:
        ids = self.tokens.require(token)
        if not ids:
            raise EmptyPoolError("Список победителей пуст.", operation="message_winners")
        return list(ids)

    async def message_winners(self, token: str, text: str) -> SendReport:
        ids = self.winners_for_token(token)
        if self.mproxy is None:
            raise ProxyError("MProxy is not configured", operation="sendMessages")
        report = await self.mproxy.send_messages(ids, text)
        logger.info("Messaged winners: %s/%s delivered", report["sent"], report["total"])
        return SendReport(sent=report["sent"], total=report["total"])

    async def query_history(self, channel: str, limit: int = 5, offset: int = 0) -> HistoryPage:
        return await self.history.query(channel, limit=limit, offset=offset)

    def active_giveaways(self) -> List[Giveaway]:
        return self.registry.active()
