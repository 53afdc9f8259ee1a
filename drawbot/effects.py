"""Critical vs best-effort collaborator calls.

A *critical* call sits on the state-changing path: its failure is raised as
the given ``DrawError`` subclass and aborts the operation. A *best-effort*
call (button edits, result posts, notifications) never raises; it returns a
``SideEffect`` describing what happened, and the failure is logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Optional, Type

from .errors import DrawError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SideEffect:
    name: str
    ok: bool
    error: Optional[str] = None
    value: Any = None

    def __bool__(self) -> bool:
        return self.ok


async def best_effort(name: str, awaitable: Awaitable[Any]) -> SideEffect:
    try:
        value = await awaitable
    except Exception as e:
        logger.exception("%s failed: %s", name, e)
        return SideEffect(name=name, ok=False, error=str(e))
    return SideEffect(name=name, ok=True, value=value)


async def critical(
    awaitable: Awaitable[Any],
    error_cls: Type[DrawError],
    message: str,
    *,
    operation: str,
    channel: Optional[str] = None,
) -> Any:
    try:
        return await awaitable
    except DrawError as e:
        if isinstance(e, error_cls):
            raise
        raise error_cls(f"{message}: {e}", operation=operation, channel=channel) from e
    except Exception as e:
        raise error_cls(f"{message}: {e}", operation=operation, channel=channel) from e
