from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .errors import StaleTokenError

logger = logging.getLogger(__name__)

DEFAULT_TTL = 10 * 60


@dataclass(frozen=True)
class EphemeralEntry:
    token: str
    value: Any
    expires_at: float


class EphemeralStore:
    """Short-lived token -> payload map for callback data.

    Telegram limits ``callback_data`` to 64 bytes, so buttons carry a token
    and the payload stays here. Tokens can be read any number of times
    until they expire; expired entries are purged on lookup and by
    ``purge_expired``.
    """

    def __init__(self, default_ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, EphemeralEntry] = {}
        self._lock = threading.Lock()

    def put(self, value: Any, ttl: Optional[float] = None) -> str:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            token = secrets.token_hex(8)
            while token in self._entries:
                token = secrets.token_hex(8)
            self._entries[token] = EphemeralEntry(token, value, self._clock() + ttl)
        return token

    def get(self, token: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(token)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[token]
                return None
            return entry.value

    def require(self, token: str) -> Any:
        value = self.get(token)
        if value is None:
            raise StaleTokenError("Session expired, start again", operation="token")
        return value

    def discard(self, token: str) -> None:
        with self._lock:
            self._entries.pop(token, None)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [t for t, e in self._entries.items() if e.expires_at <= now]
            for token in stale:
                del self._entries[token]
        if stale:
            logger.debug("Purged %d expired tokens", len(stale))
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
