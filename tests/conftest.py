"""
Pytest config.

Local imports like `import groupcheck` rely on the repo root being on sys.path. When
invoking a global `pytest` entrypoint that doesn't happen reliably during
collection, so we pin it here.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Dict, List, Set, Tuple

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()


class FakeHost:
    """
    Recording GameHost that runs frame callbacks inline.

    `grant_failures[user_id]` makes the next N grant_flag calls for that player raise.
    """

    def __init__(self) -> None:
        self.connected: Set[int] = set()
        self.names: Dict[int, str] = {}
        self.grants: List[Tuple[int, str]] = []
        self.revokes: List[Tuple[int, str]] = []
        self.messages: List[Tuple[int, str]] = []
        self.grant_failures: Dict[int, int] = {}
        self.frame_calls = 0

    def connect(self, user_id: int, name: str = "") -> None:
        self.connected.add(user_id)
        self.names[user_id] = name or f"player{user_id}"

    def disconnect(self, user_id: int) -> None:
        self.connected.discard(user_id)

    def run_on_frame_thread(self, fn: Callable[[], None]) -> None:
        self.frame_calls += 1
        fn()

    def list_connected_users(self):
        return sorted(self.connected)

    def grant_flag(self, user_id: int, flag: str) -> None:
        remaining = self.grant_failures.get(user_id, 0)
        if remaining > 0:
            self.grant_failures[user_id] = remaining - 1
            raise RuntimeError("permission store busy")
        self.grants.append((user_id, flag))

    def revoke_flag(self, user_id: int, flag: str) -> None:
        self.revokes.append((user_id, flag))

    def send_message(self, user_id: int, text: str) -> None:
        self.messages.append((user_id, text))

    def player_name(self, user_id: int) -> str:
        return self.names.get(user_id, "")


class RecordingSleep:
    """Sleep stand-in: records delays and returns immediately."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture(autouse=True)
def _clean_groupcheck_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer shell settings from leaking into config/provider tests."""
    for name in (
        "STEAM_API_KEY",
        "STEAM_API_URL",
        "GROUPCHECK_CONFIG",
        "GROUPCHECK_REQUEST_TIMEOUT_SECONDS",
        "GROUPCHECK_CACHE_DURATION_SECONDS",
        "GROUPCHECK_AD_INTERVAL_MINUTES",
        "GROUPCHECK_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)
