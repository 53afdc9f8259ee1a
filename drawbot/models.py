from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Candidate:
    user_id: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_bot: bool = False

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Candidate":
        """Build from an MProxy member record (``user_id``/``id`` plus names)."""
        raw_id = payload.get("user_id", payload.get("id"))
        return cls(
            user_id=str(raw_id),
            username=payload.get("username") or None,
            first_name=payload.get("first_name") or None,
            last_name=payload.get("last_name") or None,
            is_bot=bool(payload.get("is_bot", False)),
        )

    @classmethod
    def from_user(cls, user) -> "Candidate":
        """Snapshot an aiogram ``User``."""
        return cls(
            user_id=str(user.id),
            username=user.username or None,
            first_name=user.first_name or None,
            last_name=user.last_name or None,
            is_bot=bool(user.is_bot),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "is_bot": self.is_bot,
        }

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


@dataclass
class Giveaway:
    id: str
    channel: str
    message_ref: Optional[int]
    winners_count: int
    created_by: Optional[int]
    text: str
    scheduled_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    entries: Dict[str, Candidate] = field(default_factory=dict)

    @property
    def entry_count(self) -> int:
        return len(self.entries)

    @property
    def is_scheduled(self) -> bool:
        return self.scheduled_at is not None


@dataclass(frozen=True)
class HistoryRecord:
    channel: str
    message_ref: Optional[int]
    winners_count: int
    winners: List[Candidate]
    text: str
    completed_at: datetime
    giveaway_id: Optional[str] = None
    created_by: Optional[int] = None
    entry_count: int = 0


@dataclass(frozen=True)
class HistoryPage:
    records: List[HistoryRecord]
    total_count: int
