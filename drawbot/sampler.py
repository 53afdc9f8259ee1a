from __future__ import annotations

import random
from typing import List, Optional, Sequence, TypeVar

T = TypeVar("T")

_system_random = random.SystemRandom()


def pick_unique_random(items: Sequence[T], winners_count: int, rng: Optional[random.Random] = None) -> List[T]:
    """Pick ``winners_count`` distinct items uniformly, without replacement.

    Partial Fisher-Yates over a copy of ``items``: position ``i`` takes a
    uniformly random element from the not-yet-drawn tail, so every
    size-k subset is equally likely and the result is in draw order
    (winner #1 is the first one drawn). Uses the OS CSPRNG unless a
    generator is passed in.
    """
    total = len(items)
    if winners_count <= 0:
        return []
    winners_count = min(winners_count, total)
    rng = rng or _system_random
    pool = list(items)
    for i in range(winners_count):
        j = rng.randrange(i, total)
        pool[i], pool[j] = pool[j], pool[i]
    return pool[:winners_count]
