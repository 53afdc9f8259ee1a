from __future__ import annotations

import logging
import random
from typing import List, Optional, Set

from .eligibility import filter_eligible_members
from .errors import EmptyPoolError, ProxyError
from .models import Candidate
from .sampler import pick_unique_random

logger = logging.getLogger(__name__)


async def ensure_client_joined(mproxy, target: str) -> bool:
    """Join the MProxy account to ``target`` unless it is already there.

    Returns True when a join was made. A failed membership check is treated
    as "not a member"; a failed join raises ``ProxyError``.
    """
    try:
        member = await mproxy.is_member(target)
    except ProxyError as e:
        logger.warning("isMember check for %s failed, trying to join: %s", target, e)
        member = False
    if member:
        return False
    await mproxy.join_target(target)
    logger.info("MProxy client joined %s", target)
    return True


async def run_direct_draw(
    mproxy,
    channel: str,
    winners_count: int,
    excluded_usernames: Optional[Set[str]] = None,
    *,
    rng: Optional[random.Random] = None,
    page_size: int = 500,
    hard_max: int = 100000,
) -> List[Candidate]:
    """One-shot draw over the group's current roster; no giveaway state."""
    members = await mproxy.fetch_all_members(channel, page_size=page_size, hard_max=hard_max)
    eligible = await filter_eligible_members(mproxy, channel, members, excluded_usernames)
    winners = pick_unique_random(eligible, winners_count, rng)
    if not winners:
        raise EmptyPoolError("Не найдено участников для розыгрыша.", operation="draw", channel=channel)
    logger.info("Direct draw in %s: %d winners from %d eligible of %d", channel, len(winners), len(eligible), len(members))
    return winners
