"""
Unit tests for permission reconciliation (diffing, grant retries, revocation, round start).
"""

from __future__ import annotations

import asyncio

from groupcheck.core.catalog import GroupCatalog
from groupcheck.core.models import EMPTY_SNAPSHOT, NON_MEMBER, UNKNOWN, ConfiguredGroup, MembershipResult
from groupcheck.host.base import FrameBridge
from groupcheck.permissions.reconciler import GRANT_MAX_ATTEMPTS, PermissionReconciler, grant_delay
from groupcheck.permissions.state import PlayerStateStore

USER = 76561198000000001


def _catalog() -> GroupCatalog:
    return GroupCatalog(
        [
            ConfiguredGroup(100, "Main", ("@main/a", "@main/b"), "100", priority=1, config_index=0),
            ConfiguredGroup(200, "Elite", ("@elite",), "200", priority=10, config_index=1),
        ]
    )


def _reconciler(host, sleep, notify=None):
    store = PlayerStateStore()
    reconciler = PermissionReconciler(_catalog(), store, FrameBridge(host), on_member_detected=notify, sleep=sleep)
    return reconciler, store


def test_grant_delay_schedule():
    assert [grant_delay(a) for a in range(1, GRANT_MAX_ATTEMPTS + 1)] == [0.0, 0.5, 1.0]


def test_member_gets_primary_group_flags(fake_host, recording_sleep):
    fake_host.connect(USER)
    reconciler, store = _reconciler(fake_host, recording_sleep)

    async def scenario():
        plan = reconciler.apply(USER, MembershipResult.member_of({100}))
        await reconciler.drain()
        return plan

    plan = asyncio.run(scenario())

    assert plan.flags_to_add == ("@main/a", "@main/b")
    assert fake_host.grants.count((USER, "@main/a")) == GRANT_MAX_ATTEMPTS
    assert fake_host.grants.count((USER, "@main/b")) == GRANT_MAX_ATTEMPTS
    assert store.get(USER).granted_flags == ("@main/a", "@main/b")
    assert sorted(recording_sleep.delays) == [0.5, 0.5, 1.0, 1.0]


def test_multiple_groups_grant_highest_priority_only(fake_host, recording_sleep):
    fake_host.connect(USER)
    reconciler, _ = _reconciler(fake_host, recording_sleep)

    async def scenario():
        reconciler.apply(USER, MembershipResult.member_of({100, 200}))
        await reconciler.drain()

    asyncio.run(scenario())
    assert fake_host.grants == [(USER, "@elite")] * GRANT_MAX_ATTEMPTS


def test_unchanged_membership_is_a_no_op(fake_host, recording_sleep):
    fake_host.connect(USER)
    reconciler, _ = _reconciler(fake_host, recording_sleep)

    async def scenario():
        reconciler.apply(USER, MembershipResult.member_of({200}))
        await reconciler.drain()
        calls_before = fake_host.frame_calls
        second = reconciler.apply(USER, MembershipResult.member_of({200}))
        await reconciler.drain()
        return second, calls_before

    second, calls_before = asyncio.run(scenario())

    assert second is None
    assert fake_host.grants == [(USER, "@elite")] * GRANT_MAX_ATTEMPTS
    assert fake_host.frame_calls == calls_before


def test_group_change_revokes_old_flags(fake_host, recording_sleep):
    fake_host.connect(USER)
    reconciler, store = _reconciler(fake_host, recording_sleep)

    async def scenario():
        reconciler.apply(USER, MembershipResult.member_of({100}))
        await reconciler.drain()
        plan = reconciler.apply(USER, MembershipResult.member_of({200}))
        await reconciler.drain()
        return plan

    plan = asyncio.run(scenario())

    assert plan.flags_to_add == ("@elite",)
    assert plan.flags_to_remove == ("@main/a", "@main/b")
    assert fake_host.revokes == [(USER, "@main/a"), (USER, "@main/b")]
    assert store.get(USER).member_group_ids == frozenset({200})


def test_unknown_result_clears_flags(fake_host, recording_sleep):
    fake_host.connect(USER)
    reconciler, store = _reconciler(fake_host, recording_sleep)

    async def scenario():
        reconciler.apply(USER, MembershipResult.member_of({200}))
        await reconciler.drain()
        reconciler.apply(USER, UNKNOWN)
        await reconciler.drain()

    asyncio.run(scenario())

    assert fake_host.revokes == [(USER, "@elite")]
    assert store.get(USER) == EMPTY_SNAPSHOT


def test_ids_outside_catalog_grant_nothing(fake_host, recording_sleep):
    fake_host.connect(USER)
    reconciler, store = _reconciler(fake_host, recording_sleep)

    async def scenario():
        reconciler.apply(USER, MembershipResult.member_of({999}))
        await reconciler.drain()

    asyncio.run(scenario())

    assert fake_host.grants == []
    assert store.get(USER).member_group_ids == frozenset()


def test_zero_user_is_ignored(fake_host, recording_sleep):
    reconciler, store = _reconciler(fake_host, recording_sleep)
    assert reconciler.apply(0, MembershipResult.member_of({200})) is None
    assert len(store) == 0


def test_grant_retry_is_bounded(fake_host, recording_sleep):
    fake_host.connect(USER)
    fake_host.grant_failures[USER] = 10
    reconciler, store = _reconciler(fake_host, recording_sleep)

    async def scenario():
        reconciler.apply(USER, MembershipResult.member_of({200}))
        await reconciler.drain()

    asyncio.run(scenario())

    assert fake_host.grant_failures[USER] == 10 - GRANT_MAX_ATTEMPTS
    assert fake_host.grants == []
    assert recording_sleep.delays == [0.5, 1.0]
    # The snapshot still records the intended state.
    assert store.get(USER).granted_flags == ("@elite",)


def test_grant_is_reapplied_on_every_attempt(fake_host, recording_sleep):
    fake_host.connect(USER)
    reconciler, _ = _reconciler(fake_host, recording_sleep)

    async def scenario():
        reconciler.apply(USER, MembershipResult.member_of({200}))
        await reconciler.drain()

    asyncio.run(scenario())

    assert fake_host.grants == [(USER, "@elite")] * GRANT_MAX_ATTEMPTS
    assert recording_sleep.delays == [0.5, 1.0]


def test_grant_continues_after_a_failed_attempt(fake_host, recording_sleep):
    fake_host.connect(USER)
    fake_host.grant_failures[USER] = 1
    reconciler, _ = _reconciler(fake_host, recording_sleep)

    async def scenario():
        reconciler.apply(USER, MembershipResult.member_of({200}))
        await reconciler.drain()

    asyncio.run(scenario())

    assert fake_host.grants == [(USER, "@elite")] * (GRANT_MAX_ATTEMPTS - 1)
    assert recording_sleep.delays == [0.5, 1.0]


def test_grant_retry_abandons_stale_chain(fake_host):
    fake_host.connect(USER)
    fake_host.grant_failures[USER] = 1
    delays = []

    async def sleep_then_lose_membership(seconds: float) -> None:
        delays.append(seconds)
        store.set(USER, EMPTY_SNAPSHOT)

    reconciler, store = _reconciler(fake_host, sleep_then_lose_membership)

    async def scenario():
        reconciler.apply(USER, MembershipResult.member_of({200}))
        await reconciler.drain()

    asyncio.run(scenario())

    assert delays == [0.5]
    assert fake_host.grants == []
    assert fake_host.grant_failures[USER] == 0


def test_grant_skipped_for_disconnected_player(fake_host, recording_sleep):
    reconciler, _ = _reconciler(fake_host, recording_sleep)

    async def scenario():
        reconciler.apply(USER, MembershipResult.member_of({200}))
        await reconciler.drain()

    asyncio.run(scenario())

    assert fake_host.grants == []
    assert recording_sleep.delays == []


def test_revoke_skipped_for_disconnected_player(fake_host, recording_sleep):
    fake_host.connect(USER)
    reconciler, _ = _reconciler(fake_host, recording_sleep)

    async def scenario():
        reconciler.apply(USER, MembershipResult.member_of({200}))
        await reconciler.drain()
        fake_host.disconnect(USER)
        reconciler.apply(USER, NON_MEMBER)
        await reconciler.drain()

    asyncio.run(scenario())
    assert fake_host.revokes == []


def test_disconnect_revokes_flags_once(fake_host, recording_sleep):
    fake_host.connect(USER)
    reconciler, store = _reconciler(fake_host, recording_sleep)

    async def scenario():
        reconciler.apply(USER, MembershipResult.member_of({100}))
        await reconciler.drain()
        fake_host.disconnect(USER)
        removed = await reconciler.remove_user(USER)
        again = await reconciler.remove_user(USER)
        return removed, again

    removed, again = asyncio.run(scenario())

    assert removed.granted_flags == ("@main/a", "@main/b")
    assert again is None
    assert fake_host.revokes == [(USER, "@main/a"), (USER, "@main/b")]
    assert USER not in store


def test_member_detected_fires_on_transition_only(fake_host, recording_sleep):
    fake_host.connect(USER)
    detected = []

    async def notify(user_id, group_ids):
        detected.append((user_id, group_ids))

    reconciler, _ = _reconciler(fake_host, recording_sleep, notify)

    async def scenario():
        reconciler.apply(USER, MembershipResult.member_of({100}))
        reconciler.apply(USER, MembershipResult.member_of({200}))
        reconciler.apply(USER, NON_MEMBER)
        reconciler.apply(USER, MembershipResult.member_of({100}))
        await reconciler.drain()

    asyncio.run(scenario())

    assert detected == [(USER, frozenset({100})), (USER, frozenset({100}))]


def test_round_start_regrants_snapshot_flags(fake_host, recording_sleep):
    other = USER + 1
    fake_host.connect(USER)
    fake_host.connect(other)
    reconciler, _ = _reconciler(fake_host, recording_sleep)

    async def scenario():
        reconciler.apply(USER, MembershipResult.member_of({200}))
        reconciler.apply(other, NON_MEMBER)
        await reconciler.drain()
        count = await reconciler.reapply_connected()
        await reconciler.drain()
        return count

    count = asyncio.run(scenario())

    assert count == 1
    assert fake_host.grants == [(USER, "@elite")] * (2 * GRANT_MAX_ATTEMPTS)
    assert fake_host.revokes == []


def test_apply_if_connected_skips_departed_player(fake_host, recording_sleep):
    reconciler, store = _reconciler(fake_host, recording_sleep)

    async def scenario():
        return await reconciler.apply_if_connected(USER, MembershipResult.member_of({200}))

    assert asyncio.run(scenario()) is None
    assert USER not in store
    assert fake_host.grants == []


def test_removal_queued_after_commit_clears_the_snapshot(fake_host, recording_sleep):
    fake_host.connect(USER)
    reconciler, store = _reconciler(fake_host, recording_sleep)
    run_inline = fake_host.run_on_frame_thread
    queued = []

    async def scenario():
        fake_host.run_on_frame_thread = queued.append
        commit = asyncio.ensure_future(reconciler.apply_if_connected(USER, MembershipResult.member_of({200})))
        await asyncio.sleep(0)
        removal = asyncio.ensure_future(reconciler.remove_user(USER))
        await asyncio.sleep(0)

        fake_host.run_on_frame_thread = run_inline
        for fn in queued:
            run_inline(fn)
        plan = await commit
        removed = await removal
        await reconciler.drain()
        return plan, removed

    plan, removed = asyncio.run(scenario())

    assert len(queued) == 2
    assert plan is not None
    assert removed.granted_flags == ("@elite",)
    assert USER not in store
    assert fake_host.grants == []
    assert fake_host.revokes == [(USER, "@elite")]
