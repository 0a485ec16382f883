import datetime as dt
import threading
import uuid

import pytest

from dayflow_tools.workspace.errors import (
    ForbiddenError,
    LockConflictError,
    LockNotHeldError,
    NotFoundError,
)
from dayflow_tools.workspace.locks import as_utc
from dayflow_tools.workspace.schema.enums import LockFailure


def test_concurrent_acquire_has_exactly_one_winner(
    make_service, shared_workspace, owner_id, member_id
):
    contenders = [(make_service(), owner_id), (make_service(), member_id)]
    barrier = threading.Barrier(len(contenders))
    results = {}

    def attempt(svc, user_id):
        barrier.wait()
        try:
            svc.acquire_workspace_lock(shared_workspace.id, user_id)
            results[user_id] = "acquired"
        except LockConflictError:
            results[user_id] = "conflict"

    threads = [threading.Thread(target=attempt, args=contender) for contender in contenders]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(results.values()) == ["acquired", "conflict"]
    winner = next(user for user, outcome in results.items() if outcome == "acquired")
    assert make_service().lease_holder(shared_workspace.id, owner_id) == winner


def test_reacquire_by_holder_refreshes_timestamp(service, shared_workspace, owner_id, clock):
    first = service.acquire_workspace_lock(shared_workspace.id, owner_id)
    first_at = as_utc(first.editing_at)

    clock.advance(10)
    again = service.acquire_workspace_lock(shared_workspace.id, owner_id)

    assert again.editing_by == owner_id
    assert as_utc(again.editing_at) - first_at == dt.timedelta(seconds=10)
    assert as_utc(again.editing_at) == clock.now


def test_second_user_conflicts_while_lease_is_live(
    make_service, shared_workspace, owner_id, member_id, clock
):
    owner_service = make_service()
    member_service = make_service()
    owner_service.acquire_workspace_lock(shared_workspace.id, owner_id)

    clock.advance(59)
    with pytest.raises(LockConflictError):
        member_service.acquire_workspace_lock(shared_workspace.id, member_id)

    assert member_service.lease_holder(shared_workspace.id, member_id) == owner_id


def test_expired_lease_can_be_taken_over(
    make_service, shared_workspace, owner_id, member_id, clock
):
    owner_service = make_service()
    member_service = make_service()
    owner_service.acquire_workspace_lock(shared_workspace.id, owner_id)

    clock.advance(61)

    # Stored holder is still there, but nobody is considered to hold it.
    stale = member_service.locks.refresh(shared_workspace.id)
    assert stale.editing_by == owner_id
    assert member_service.lease_holder(shared_workspace.id, member_id) is None
    snapshot = member_service.workspace_snapshot(shared_workspace.id, member_id)
    assert snapshot.editing_by is None

    member_service.acquire_workspace_lock(shared_workspace.id, member_id)
    assert owner_service.lease_holder(shared_workspace.id, owner_id) == member_id


def test_release_by_non_holder_is_a_no_op(
    make_service, shared_workspace, owner_id, member_id
):
    owner_service = make_service()
    member_service = make_service()
    owner_service.acquire_workspace_lock(shared_workspace.id, owner_id)

    member_service.release_workspace_lock(shared_workspace.id, member_id)
    assert member_service.lease_holder(shared_workspace.id, member_id) == owner_id

    owner_service.release_workspace_lock(shared_workspace.id, owner_id)
    assert member_service.lease_holder(shared_workspace.id, member_id) is None


def test_heartbeat_extends_live_lease_only(
    make_service, shared_workspace, owner_id, member_id, clock
):
    owner_service = make_service()
    member_service = make_service()
    owner_service.acquire_workspace_lock(shared_workspace.id, owner_id)

    clock.advance(30)
    assert owner_service.heartbeat_workspace_lock(shared_workspace.id, owner_id) is True
    assert member_service.heartbeat_workspace_lock(shared_workspace.id, member_id) is False

    clock.advance(45)
    assert member_service.lease_holder(shared_workspace.id, member_id) == owner_id

    clock.advance(61)
    assert owner_service.heartbeat_workspace_lock(shared_workspace.id, owner_id) is False
    assert member_service.lease_holder(shared_workspace.id, member_id) is None


def test_transfer_hands_lease_to_member(make_service, shared_workspace, owner_id, member_id):
    owner_service = make_service()
    owner_service.acquire_workspace_lock(shared_workspace.id, owner_id)

    owner_service.transfer_workspace_lock(shared_workspace.id, member_id, owner_id)

    assert make_service().lease_holder(shared_workspace.id, member_id) == member_id
    with pytest.raises(LockNotHeldError):
        owner_service.locks.assert_held(shared_workspace.id, owner_id)


def test_transfer_requires_live_lease_and_accessible_target(
    service, shared_workspace, owner_id, member_id
):
    with pytest.raises(LockNotHeldError):
        service.transfer_workspace_lock(shared_workspace.id, member_id, owner_id)

    service.acquire_workspace_lock(shared_workspace.id, owner_id)
    with pytest.raises(ForbiddenError):
        service.transfer_workspace_lock(shared_workspace.id, uuid.uuid4(), owner_id)
    assert service.lease_holder(shared_workspace.id, owner_id) == owner_id


def test_assert_held_reports_reason(make_service, shared_workspace, owner_id, member_id, clock):
    owner_service = make_service()
    member_service = make_service()

    with pytest.raises(LockNotHeldError) as no_lease:
        owner_service.locks.assert_held(shared_workspace.id, owner_id)
    assert no_lease.value.reason is LockFailure.NO_LEASE

    owner_service.acquire_workspace_lock(shared_workspace.id, owner_id)
    with pytest.raises(LockNotHeldError) as other:
        member_service.locks.assert_held(shared_workspace.id, member_id)
    assert other.value.reason is LockFailure.HELD_BY_OTHER

    clock.advance(120)
    with pytest.raises(LockNotHeldError) as expired:
        owner_service.locks.assert_held(shared_workspace.id, owner_id)
    assert expired.value.reason is LockFailure.EXPIRED


def test_outsider_cannot_touch_the_lease(service, shared_workspace):
    outsider = uuid.uuid4()
    with pytest.raises(NotFoundError):
        service.acquire_workspace_lock(shared_workspace.id, outsider)
    with pytest.raises(NotFoundError):
        service.release_workspace_lock(shared_workspace.id, outsider)
    with pytest.raises(NotFoundError):
        service.heartbeat_workspace_lock(shared_workspace.id, outsider)


def test_removed_member_loses_the_lease(make_service, shared_workspace, owner_id, member_id):
    member_service = make_service()
    member_service.acquire_workspace_lock(shared_workspace.id, member_id)

    owner_service = make_service()
    owner_service.remove_workspace_member(shared_workspace.id, member_id, owner_id)

    assert owner_service.lease_holder(shared_workspace.id, owner_id) is None
    owner_service.acquire_workspace_lock(shared_workspace.id, owner_id)
