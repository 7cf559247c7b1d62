from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Protocol, Sequence, TypeVar, runtime_checkable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class GameHost(Protocol):
    """
    Outbound interface to the game server.

    Every method except `run_on_frame_thread` must only be called from a callback
    passed to `run_on_frame_thread`; the host's permission store is not safe for
    off-thread use.
    """

    def run_on_frame_thread(self, fn: Callable[[], None]) -> None:
        """Queue `fn` to run on the next frame tick. Must be safe to call from any thread."""
        ...

    def list_connected_users(self) -> Sequence[int]:
        """SteamID64s of connected, authorized players."""
        ...

    def grant_flag(self, user_id: int, flag: str) -> None: ...

    def revoke_flag(self, user_id: int, flag: str) -> None: ...

    def send_message(self, user_id: int, text: str) -> None: ...

    def player_name(self, user_id: int) -> str: ...


def _resolve(future: "asyncio.Future[Any]", result: Any) -> None:
    if not future.done():
        future.set_result(result)


def _reject(future: "asyncio.Future[Any]", exc: BaseException) -> None:
    if not future.done():
        future.set_exception(exc)


class FrameBridge:
    """
    Awaitable hand-off onto the host frame thread.

    `await bridge.call(fn)` queues `fn` with `run_on_frame_thread` and resumes the
    calling coroutine with its return value (or exception) once the frame ran it.
    """

    def __init__(self, host: GameHost) -> None:
        self.host = host

    async def call(self, fn: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[T]" = loop.create_future()

        def _on_frame() -> None:
            try:
                result = fn()
            except BaseException as exc:  # delivered to the awaiting coroutine
                loop.call_soon_threadsafe(_reject, future, exc)
            else:
                loop.call_soon_threadsafe(_resolve, future, result)

        self.host.run_on_frame_thread(_on_frame)
        return await future

    async def connected_users(self) -> Sequence[int]:
        return await self.call(lambda: list(self.host.list_connected_users()))

    async def is_connected(self, user_id: int) -> bool:
        return await self.call(lambda: user_id in self.host.list_connected_users())
