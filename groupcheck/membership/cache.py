"""Time-bounded membership cache keyed by SteamID64."""

from __future__ import annotations

import logging
import threading
import time
from typing import AbstractSet, Callable, Dict, FrozenSet, Optional

from groupcheck.core.models import MembershipCacheEntry

logger = logging.getLogger(__name__)

MIN_TTL_SECONDS = 5.0


class MembershipCache:
    """
    In-memory cache of verified, non-empty memberships.

    Expiry is lazy: an expired entry is dropped when it is read. There is no other
    eviction; the key space is bounded by the players the server has seen.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: Dict[int, MembershipCacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, user_id: int) -> Optional[FrozenSet[int]]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            if entry.expired(now):
                del self._entries[user_id]
                expired = True
            else:
                expired = False

        if expired:
            logger.debug(f"Cache expired for {user_id}")
            return None
        logger.debug(f"Cache hit for {user_id} (membership groups={sorted(entry.member_group_ids)})")
        return entry.member_group_ids

    def put(self, user_id: int, group_ids: AbstractSet[int], ttl_seconds: float) -> None:
        """Store (or overwrite) an entry; the TTL is floored at 5 seconds. Empty sets are never stored."""
        if not group_ids:
            return
        ttl = max(MIN_TTL_SECONDS, float(ttl_seconds))
        entry = MembershipCacheEntry(frozenset(group_ids), self._clock() + ttl)
        with self._lock:
            self._entries[user_id] = entry
        logger.debug(f"Cache store for {user_id} (membership groups={sorted(entry.member_group_ids)}, ttl={ttl}s)")

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
