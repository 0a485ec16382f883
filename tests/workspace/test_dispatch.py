import uuid
from types import SimpleNamespace

import pytest

from dayflow_tools.workspace import dispatch, schemas
from dayflow_tools.workspace.errors import (
    LockNotHeldError,
    NotFoundError,
    UnauthenticatedError,
)
from dayflow_tools.workspace.schema.enums import CardType, LockFailure


def test_exempt_mutations_cover_lifecycle_sharing_and_locks():
    for name in (
        "create_workspace",
        "delete_workspace",
        "acquire_workspace_lock",
        "release_workspace_lock",
        "heartbeat_workspace_lock",
        "transfer_workspace_lock",
        "accept_invite",
        "update_profile",
    ):
        assert dispatch.is_exempt(name), name
    for name in ("create_card", "move_card", "update_workspace", "create_column"):
        assert not dispatch.is_exempt(name), name


class _RecordingLocks:
    def __init__(self, error=None):
        self.checked = []
        self.error = error

    def assert_held(self, workspace_id, user_id):
        self.checked.append((workspace_id, user_id))
        if self.error is not None:
            raise self.error


class _RecordingSession:
    def __init__(self):
        self.rollbacks = 0

    def rollback(self):
        self.rollbacks += 1


def _fake_service(error=None):
    return SimpleNamespace(session=_RecordingSession(), locks=_RecordingLocks(error))


def test_wrapper_checks_lease_before_running_handler():
    workspace_id = uuid.uuid4()
    user_id = uuid.uuid4()
    calls = []

    def rename(self, workspace_id, title, user_id):
        calls.append(title)
        return title

    wrapped = dispatch.with_lock_check(rename, name="rename", resolve=dispatch.direct())
    svc = _fake_service()

    assert wrapped(svc, workspace_id, "New", user_id=user_id) == "New"
    assert svc.locks.checked == [(workspace_id, user_id)]
    assert calls == ["New"]
    assert wrapped.mutation_name == "rename"
    assert wrapped.lock_exempt is False


def test_wrapper_rolls_back_and_skips_handler_without_lease():
    def rename(self, workspace_id, title, user_id):
        raise AssertionError("handler must not run")

    wrapped = dispatch.with_lock_check(rename, name="rename", resolve=dispatch.direct())
    svc = _fake_service(LockNotHeldError(LockFailure.NO_LEASE))

    with pytest.raises(LockNotHeldError):
        wrapped(svc, uuid.uuid4(), "New", uuid.uuid4())
    assert svc.session.rollbacks == 1


def test_custom_exemption_predicate_skips_lease_check():
    def rename(self, workspace_id, user_id):
        return "ok"

    wrapped = dispatch.with_lock_check(
        rename, name="rename", resolve=dispatch.direct(), is_exempt=lambda name: True
    )
    svc = _fake_service(LockNotHeldError(LockFailure.NO_LEASE))

    assert wrapped(svc, uuid.uuid4(), uuid.uuid4()) == "ok"
    assert svc.locks.checked == []


def test_missing_user_is_unauthenticated(service):
    with pytest.raises(UnauthenticatedError):
        service.create_workspace(schemas.WorkspaceCreateRequest(title="Nope"), None)


def test_exempt_mutations_work_without_lease(service, owner_id):
    workspace = service.create_workspace(schemas.WorkspaceCreateRequest(title="Free"), owner_id)
    assert service.toggle_workspace_pinned(workspace.id, owner_id) is True
    service.generate_invite_token(workspace.id, owner_id)
    service.acquire_workspace_lock(workspace.id, owner_id)
    service.release_workspace_lock(workspace.id, owner_id)
    service.delete_workspace(workspace.id, owner_id)

    with pytest.raises(NotFoundError):
        service.get_workspace(workspace.id, owner_id)


def test_scoped_mutations_need_lease(service, owner_id):
    workspace = service.create_workspace(schemas.WorkspaceCreateRequest(title="Locked"), owner_id)
    column = service.list_columns(workspace.id, owner_id)[0]

    with pytest.raises(LockNotHeldError) as exc:
        service.create_card(
            schemas.CardCreateRequest(type=CardType.NOTE, title="x", column_id=column.id),
            owner_id,
        )
    assert exc.value.reason is LockFailure.NO_LEASE

    with pytest.raises(LockNotHeldError):
        service.update_workspace(
            workspace.id, schemas.WorkspaceUpdateRequest(title="Renamed"), owner_id
        )
    with pytest.raises(LockNotHeldError):
        service.create_column(workspace.id, schemas.ColumnCreateRequest(title="Later"), owner_id)


def test_hub_items_skip_the_lease(service, owner_id):
    card = service.create_card(
        schemas.CardCreateRequest(type=CardType.LINK, title="Reading list"), owner_id
    )
    assert card.workspace_id is None
    assert card.order is None

    toggled = service.toggle_card_done(card.id, owner_id)
    assert toggled.done is True

    tool = service.create_tool(schemas.ToolCreateRequest(title="Calendar"), owner_id)
    service.update_tool(tool.id, schemas.ToolUpdateRequest(title="Agenda"), owner_id)
    assert [t.title for t in service.list_tools(owner_id)] == ["Agenda"]
