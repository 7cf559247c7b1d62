"""
Permission reconciliation: diff desired vs. granted flags and drive the host.

Each grant is applied three times (0s / 0.5s / 1.0s apart); before every attempt
the chain re-reads the stored snapshot and the connected-player list on the frame
thread and quietly stops if the flag is no longer wanted. Revocations run once.
Host failures are logged and never propagate.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Coroutine, FrozenSet, Literal, Optional, Sequence, Set, Tuple

from groupcheck.core.catalog import GroupCatalog
from groupcheck.core.models import (
    MembershipResult,
    PlayerMembershipSnapshot,
    flags_difference,
    unique_flags,
)
from groupcheck.host.base import FrameBridge
from groupcheck.permissions.state import PlayerStateStore

logger = logging.getLogger(__name__)

GRANT_MAX_ATTEMPTS = 3
GRANT_RETRY_STEP_SECONDS = 0.5

GrantOutcome = Literal["granted", "failed", "stale"]
SleepFn = Callable[[float], Awaitable[None]]
MemberDetectedFn = Callable[[int, FrozenSet[int]], Awaitable[None]]


def grant_delay(attempt: int) -> float:
    """Delay before `attempt` (1-based), measured from the previous attempt."""
    return GRANT_RETRY_STEP_SECONDS * max(0, attempt - 1)


@dataclass(frozen=True)
class ReconcilePlan:
    user_id: int
    member_group_ids: FrozenSet[int]
    required_flags: Tuple[str, ...]
    flags_to_add: Tuple[str, ...]
    flags_to_remove: Tuple[str, ...]
    member_detected: bool


class PermissionReconciler:
    def __init__(
        self,
        catalog: GroupCatalog,
        store: PlayerStateStore,
        frame: FrameBridge,
        *,
        on_member_detected: Optional[MemberDetectedFn] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.frame = frame
        self._on_member_detected = on_member_detected
        self._sleep = sleep
        self._tasks: Set["asyncio.Task[None]"] = set()

    def update_catalog(self, catalog: GroupCatalog) -> None:
        self.catalog = catalog

    def plan(self, user_id: int, membership: MembershipResult, *, force: bool = False) -> Optional[ReconcilePlan]:
        """
        Compute the delta for a new membership, or None when nothing changed.

        `force` re-grants every required flag even if the snapshot already lists it
        (the host may have dropped its permissions behind our back).
        """
        member_ids = self.catalog.restrict(membership.member_group_ids)
        required = unique_flags(self.catalog.flags_for(member_ids))
        current = self.store.get(user_id)

        if not force and current is not None and current.matches(member_ids, required):
            return None

        current_flags = current.granted_flags if current is not None else ()
        return ReconcilePlan(
            user_id=user_id,
            member_group_ids=member_ids,
            required_flags=required,
            flags_to_add=required if force else flags_difference(required, current_flags),
            flags_to_remove=flags_difference(current_flags, required),
            member_detected=bool(member_ids) and (current is None or not current.has_membership),
        )

    def apply(self, user_id: int, membership: MembershipResult, *, force: bool = False) -> Optional[ReconcilePlan]:
        """
        Reconcile a player's flags with a freshly resolved membership.

        Must be called from the event loop. Grant chains, revocations and the
        "member detected" message are scheduled as tasks; `drain()` awaits them.
        """
        plan = self._commit(user_id, membership, force=force)
        if plan is not None:
            self._schedule(plan)
        return plan

    async def apply_if_connected(self, user_id: int, membership: MembershipResult) -> Optional[ReconcilePlan]:
        """
        Like `apply`, but the connection check and the snapshot write happen in one
        frame callback, so a disconnect can never land between them.
        """
        if user_id == 0:
            return None

        def _commit_on_frame() -> Optional[ReconcilePlan]:
            if user_id not in self.frame.host.list_connected_users():
                logger.debug(f"Player {user_id} went missing before membership apply")
                return None
            return self._commit(user_id, membership)

        try:
            plan = await self.frame.call(_commit_on_frame)
        except Exception as e:
            logger.warning(f"Failed to apply membership for {user_id}: {e}")
            return None
        if plan is not None:
            self._schedule(plan)
        return plan

    def _commit(self, user_id: int, membership: MembershipResult, *, force: bool = False) -> Optional[ReconcilePlan]:
        """Plan and record the new snapshot. Safe on either thread; schedules nothing."""
        if user_id == 0:
            return None

        plan = self.plan(user_id, membership, force=force)
        if plan is None:
            return None

        logger.debug(
            f"Membership apply for {user_id}: groups={sorted(plan.member_group_ids)} "
            f"flagsToAdd={list(plan.flags_to_add)} flagsToRemove={list(plan.flags_to_remove)}"
        )

        # The snapshot records the intended state even if individual grants later fail;
        # grant chains validate against it.
        self.store.set(user_id, PlayerMembershipSnapshot(plan.member_group_ids, plan.required_flags))
        return plan

    def _schedule(self, plan: ReconcilePlan) -> None:
        user_id = plan.user_id
        for flag in plan.flags_to_add:
            self._spawn(self._grant_with_retry(user_id, flag))
        if plan.flags_to_remove:
            self._spawn(self._revoke(user_id, plan.flags_to_remove))
        if plan.member_detected and self._on_member_detected is not None:
            self._spawn(self._on_member_detected(user_id, plan.member_group_ids))

    async def remove_user(self, user_id: int) -> Optional[PlayerMembershipSnapshot]:
        """
        Drop a disconnecting player's snapshot and revoke its flags in one pass.

        The snapshot is popped on the frame thread, after any commit queued before
        the disconnect, so no snapshot outlives the session.
        """

        def _revoke_all() -> Optional[PlayerMembershipSnapshot]:
            snapshot = self.store.pop(user_id)
            if snapshot is None:
                return None
            for flag in snapshot.granted_flags:
                try:
                    self.frame.host.revoke_flag(user_id, flag)
                    logger.info(f"Revoked {flag} from {user_id}")
                except Exception as e:
                    logger.warning(f"Failed to revoke {flag} from {user_id}: {e}")
            return snapshot

        try:
            return await self.frame.call(_revoke_all)
        except Exception as e:
            logger.warning(f"Failed to revoke flags for {user_id}: {e}")
            return self.store.pop(user_id)

    async def reapply_connected(self) -> int:
        """
        Re-grant snapshot flags to every connected player that holds any.

        Derived from the stored snapshot, never re-queried. Returns the number of
        players reapplied.
        """
        try:
            users = await self.frame.connected_users()
        except Exception as e:
            logger.warning(f"Failed to reapply flags on round start: {e}")
            return 0

        count = 0
        for user_id in users:
            if not user_id:
                continue
            snapshot = self.store.get(user_id)
            if snapshot is None or not snapshot.granted_flags:
                continue
            self.apply(user_id, MembershipResult(True, snapshot.member_group_ids), force=True)
            count += 1
        return count

    async def drain(self) -> None:
        """Wait for all scheduled grant/revoke/notify work to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _spawn(self, coro: Coroutine[object, object, object]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: "asyncio.Task[None]") -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Reconciliation task failed: {task.exception()}")

    def _grant_on_frame(self, user_id: int, flag: str, attempt: int) -> GrantOutcome:
        snapshot = self.store.get(user_id)
        if snapshot is None or not snapshot.has_flag(flag):
            logger.debug(f"Skipping flag grant for {user_id} (state changed)")
            return "stale"
        if user_id not in self.frame.host.list_connected_users():
            logger.debug(f"Unable to resolve player for flag grant attempt {attempt} on {user_id}")
            return "stale"

        try:
            self.frame.host.grant_flag(user_id, flag)
        except Exception as e:
            logger.warning(f"Failed to apply {flag} to {user_id} on attempt {attempt}: {e}")
            return "failed"

        if attempt == 1:
            logger.info(f"Granted {flag} to {user_id}")
        else:
            logger.debug(f"Reapplied {flag} to {user_id} (attempt {attempt})")
        return "granted"

    async def _grant_with_retry(self, user_id: int, flag: str) -> None:
        # Every attempt re-grants while the flag is still wanted; the host may reset
        # permissions shortly after a player authorizes.
        granted = False
        for attempt in range(1, GRANT_MAX_ATTEMPTS + 1):
            if attempt > 1:
                await self._sleep(grant_delay(attempt))
            try:
                outcome = await self.frame.call(lambda a=attempt: self._grant_on_frame(user_id, flag, a))
            except Exception as e:
                logger.warning(f"Failed to queue grant of {flag} for {user_id} on attempt {attempt}: {e}")
                continue
            if outcome == "stale":
                return
            granted = granted or outcome == "granted"
        if not granted:
            logger.warning(f"Giving up on {flag} for {user_id} after {GRANT_MAX_ATTEMPTS} attempts")

    async def _revoke(self, user_id: int, flags: Sequence[str]) -> None:
        def _revoke_on_frame() -> None:
            if user_id not in self.frame.host.list_connected_users():
                return
            for flag in flags:
                try:
                    self.frame.host.revoke_flag(user_id, flag)
                    logger.info(f"Revoked {flag} from {user_id}")
                except Exception as e:
                    logger.warning(f"Failed to remove {flag} from {user_id}: {e}")

        try:
            await self.frame.call(_revoke_on_frame)
        except Exception as e:
            logger.warning(f"Failed to remove flags from {user_id}: {e}")
