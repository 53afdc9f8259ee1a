from __future__ import annotations

import secrets
import threading
from datetime import datetime
from typing import Dict, List, Optional

from .errors import NotFoundError
from .models import Candidate, Giveaway


class GiveawayRegistry:
    """In-memory store of active giveaways.

    Every mutation is a single-key operation under one lock, so entrants
    can upsert concurrently and ``remove`` works as an atomic claim: only
    one caller ever gets the giveaway back.
    """

    def __init__(self) -> None:
        self._items: Dict[str, Giveaway] = {}
        self._lock = threading.Lock()

    def allocate_id(self) -> str:
        while True:
            gid = secrets.token_hex(8)
            if gid not in self._items:
                return gid

    def create(
        self,
        *,
        channel: str,
        text: str,
        winners_count: int,
        message_ref: Optional[int],
        created_by: Optional[int] = None,
        scheduled_at: Optional[datetime] = None,
        giveaway_id: Optional[str] = None,
    ) -> Giveaway:
        if winners_count < 1:
            raise ValueError("winners_count must be positive")
        giveaway = Giveaway(
            id=giveaway_id or self.allocate_id(),
            channel=channel,
            message_ref=message_ref,
            winners_count=winners_count,
            created_by=created_by,
            text=text,
            scheduled_at=scheduled_at,
        )
        with self._lock:
            if giveaway.id in self._items:
                raise ValueError(f"giveaway {giveaway.id} already exists")
            self._items[giveaway.id] = giveaway
        return giveaway

    def get(self, giveaway_id: str) -> Optional[Giveaway]:
        with self._lock:
            return self._items.get(giveaway_id)

    def record_entry(self, giveaway_id: str, candidate: Candidate) -> int:
        with self._lock:
            giveaway = self._items.get(giveaway_id)
            if giveaway is None:
                raise NotFoundError("Giveaway not found or already finished", operation="entry")
            giveaway.entries[str(candidate.user_id)] = candidate
            return len(giveaway.entries)

    def remove(self, giveaway_id: str) -> Optional[Giveaway]:
        with self._lock:
            return self._items.pop(giveaway_id, None)

    def active(self) -> List[Giveaway]:
        with self._lock:
            return list(self._items.values())

    def __contains__(self, giveaway_id: str) -> bool:
        with self._lock:
            return giveaway_id in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
