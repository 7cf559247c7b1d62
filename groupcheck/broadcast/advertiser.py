"""Periodic advertisement to connected non-members."""

from __future__ import annotations

import asyncio
import logging
from typing import AbstractSet, Awaitable, Callable, Optional

from groupcheck.host.base import FrameBridge
from groupcheck.permissions.state import PlayerStateStore

logger = logging.getLogger(__name__)

MIN_INTERVAL_MINUTES = 1

SleepFn = Callable[[float], Awaitable[None]]
FormatFn = Callable[[str, int, AbstractSet[int]], str]


class AdvertisementScheduler:
    """
    Stopped -> Running -> Stopped.

    While running: sleep the interval, then send the template to every connected
    player whose snapshot shows no membership (players without a snapshot yet are
    skipped). `stop()` cancels the sleep and waits for the loop to exit.
    """

    def __init__(
        self,
        store: PlayerStateStore,
        frame: FrameBridge,
        format_message: FormatFn,
        *,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.store = store
        self.frame = frame
        self._format_message = format_message
        self._sleep = sleep
        self._task: Optional["asyncio.Task[None]"] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval_minutes: float, template: Optional[str]) -> bool:
        """Start the loop. Returns False (and stays stopped) when disabled or already running."""
        if interval_minutes <= 0 or not template or not template.strip():
            logger.debug(
                f"Non-member advertisement disabled (interval={interval_minutes}, "
                f"hasTemplate={bool(template and template.strip())})"
            )
            return False
        if self.running:
            logger.debug("Non-member advertisement loop already running")
            return False

        interval_seconds = max(MIN_INTERVAL_MINUTES, interval_minutes) * 60
        self._task = asyncio.get_running_loop().create_task(self._run(template, interval_seconds))
        logger.debug(f"Non-member advertisement loop scheduled (interval={interval_seconds}s)")
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Non-member advertisement loop faulted: {e}", exc_info=True)

    async def restart(self, interval_minutes: float, template: Optional[str]) -> bool:
        await self.stop()
        return self.start(interval_minutes, template)

    async def _run(self, template: str, interval_seconds: float) -> None:
        while True:
            await self._sleep(interval_seconds)
            try:
                sent = await self.broadcast(template)
                logger.debug(f"Non-member advertisement sent to {sent} player(s)")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Failed during non-member advertisement broadcast: {e}")

    async def broadcast(self, template: str) -> int:
        """Send one round of the advertisement; returns how many players received it."""

        def _on_frame() -> int:
            sent = 0
            for user_id in self.frame.host.list_connected_users():
                if not user_id:
                    continue
                snapshot = self.store.get(user_id)
                if snapshot is None or snapshot.has_membership:
                    continue
                try:
                    text = self._format_message(template, user_id, snapshot.member_group_ids)
                    if text:
                        self.frame.host.send_message(user_id, text)
                        sent += 1
                except Exception as e:
                    logger.warning(f"Failed to send advertisement to {user_id}: {e}")
            return sent

        return await self.frame.call(_on_frame)
