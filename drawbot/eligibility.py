from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional, Set

from .models import Candidate

logger = logging.getLogger(__name__)


def normalize_username(username: Optional[str]) -> str:
    return (username or "").strip().lstrip("@").lower()


def build_excluded_usernames(raw: Optional[str]) -> Set[str]:
    """``"@Foo, bar"`` -> ``{"foo", "bar"}``."""
    return {u for u in (normalize_username(part) for part in (raw or "").split(",")) if u}


def filter_eligible(
    roster: Iterable[Candidate],
    admins: Iterable[Candidate] = (),
    self_id: Optional[str] = None,
    excluded_usernames: Optional[Set[str]] = None,
) -> List[Candidate]:
    """Drop bots, admins, the client account and blocklisted usernames.

    Roster order is kept. A user id seen twice (overlapping member pages)
    is kept once, at its first position.
    """
    excluded = excluded_usernames or set()
    admin_ids = {str(a.user_id) for a in admins}
    self_id = str(self_id) if self_id else None

    seen: Set[str] = set()
    eligible: List[Candidate] = []
    for member in roster:
        uid = str(member.user_id)
        if uid in seen:
            continue
        seen.add(uid)
        if member.is_bot:
            continue
        if normalize_username(member.username) in excluded:
            continue
        if uid in admin_ids:
            continue
        if self_id and uid == self_id:
            continue
        eligible.append(member)
    return eligible


async def filter_eligible_members(
    mproxy,
    channel: str,
    roster: Iterable[Candidate],
    excluded_usernames: Optional[Set[str]] = None,
) -> List[Candidate]:
    """Look up admins and the client's own account, then filter ``roster``.

    Both lookups fail open: without an admin list nobody is excluded as an
    admin, and without ``me()`` the self-exclusion is skipped.
    """
    admins_res, me_res = await asyncio.gather(
        mproxy.fetch_admins(channel),
        mproxy.me(),
        return_exceptions=True,
    )

    admins: List[Candidate] = []
    if isinstance(admins_res, Exception):
        logger.warning("Admin list for %s unavailable, not excluding admins: %s", channel, admins_res)
    else:
        admins = list(admins_res)

    self_id: Optional[str] = None
    if isinstance(me_res, Exception):
        logger.warning("Client identity unavailable, skipping self-exclusion: %s", me_res)
    elif me_res is not None:
        self_id = me_res.user_id

    eligible = filter_eligible(roster, admins, self_id, excluded_usernames)
    logger.info("Eligible pool for %s: %d members (admins=%d)", channel, len(eligible), len(admins))
    return eligible
