"""Per-player membership snapshots for connected players."""

from __future__ import annotations

import threading
from typing import Dict, List, Optional, Tuple

from groupcheck.core.models import PlayerMembershipSnapshot


class PlayerStateStore:
    """
    Thread-safe map of SteamID64 -> last reconciled snapshot.

    Read from the event loop (reconciliation) and from the frame thread (retry
    validation, advertisement). Each operation is atomic; snapshots are replaced
    wholesale, never mutated.
    """

    def __init__(self) -> None:
        self._snapshots: Dict[int, PlayerMembershipSnapshot] = {}
        self._lock = threading.Lock()

    def get(self, user_id: int) -> Optional[PlayerMembershipSnapshot]:
        with self._lock:
            return self._snapshots.get(user_id)

    def set(self, user_id: int, snapshot: PlayerMembershipSnapshot) -> None:
        with self._lock:
            self._snapshots[user_id] = snapshot

    def pop(self, user_id: int) -> Optional[PlayerMembershipSnapshot]:
        with self._lock:
            return self._snapshots.pop(user_id, None)

    def items(self) -> List[Tuple[int, PlayerMembershipSnapshot]]:
        with self._lock:
            return list(self._snapshots.items())

    def clear(self) -> None:
        with self._lock:
            self._snapshots.clear()

    def __contains__(self, user_id: object) -> bool:
        with self._lock:
            return user_id in self._snapshots

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshots)
