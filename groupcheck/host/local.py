"""In-process host for local development and the CLI (no game server required)."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

logger = logging.getLogger(__name__)


class LocalHost:
    """
    GameHost with a single consumer thread draining a frame queue.

    Mirrors the game server's threading contract: callbacks passed to
    `run_on_frame_thread` run one at a time, in order, on one dedicated thread.
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[Optional[Callable[[], None]]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._players: Dict[int, str] = {}
        self._flags: Dict[int, Set[str]] = {}
        self.messages: List[Tuple[int, str]] = []

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._frame_loop, name="frame", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        thread, self._thread = self._thread, None
        if thread is None:
            return
        self._queue.put(None)
        thread.join(timeout)

    def _frame_loop(self) -> None:
        while True:
            fn = self._queue.get()
            if fn is None:
                return
            try:
                fn()
            except Exception:
                logger.exception("Frame callback failed")

    def connect(self, user_id: int, name: str = "") -> None:
        with self._lock:
            self._players[user_id] = name or str(user_id)

    def disconnect(self, user_id: int) -> None:
        with self._lock:
            self._players.pop(user_id, None)
            self._flags.pop(user_id, None)

    def flags_of(self, user_id: int) -> Set[str]:
        with self._lock:
            return set(self._flags.get(user_id, set()))

    # GameHost

    def run_on_frame_thread(self, fn: Callable[[], None]) -> None:
        if self._thread is None:
            raise RuntimeError("LocalHost frame loop is not running")
        self._queue.put(fn)

    def list_connected_users(self) -> Sequence[int]:
        with self._lock:
            return list(self._players)

    def grant_flag(self, user_id: int, flag: str) -> None:
        with self._lock:
            self._flags.setdefault(user_id, set()).add(flag)

    def revoke_flag(self, user_id: int, flag: str) -> None:
        with self._lock:
            self._flags.get(user_id, set()).discard(flag)

    def send_message(self, user_id: int, text: str) -> None:
        with self._lock:
            self.messages.append((user_id, text))
        logger.info(f"[chat -> {user_id}] {text}")

    def player_name(self, user_id: int) -> str:
        with self._lock:
            return self._players.get(user_id, "")
