"""
Test configuration and fixtures for the test suite
"""
from __future__ import annotations

import datetime as dt
import uuid
from pathlib import Path

import pytest

from dayflow_tools.workspace import schemas
from dayflow_tools.workspace.service import (
    WorkspaceDatabase,
    WorkspaceService,
    WorkspaceSettings,
    init_engine,
)


class FakeClock:
    """Manually advanced UTC clock shared by every service in a test."""

    def __init__(self, start: dt.datetime | None = None):
        self.now = start or dt.datetime(2026, 1, 5, 9, 0, tzinfo=dt.timezone.utc)

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, seconds: float) -> dt.datetime:
        self.now = self.now + dt.timedelta(seconds=seconds)
        return self.now


@pytest.fixture()
def temp_db_path(tmp_path: Path) -> Path:
    return tmp_path / "workspace.db"


@pytest.fixture()
def settings(temp_db_path: Path) -> WorkspaceSettings:
    return WorkspaceSettings(database_url=f"sqlite:///{temp_db_path}")


@pytest.fixture()
def database(settings: WorkspaceSettings):
    engine = init_engine(settings)
    db = WorkspaceDatabase(engine)
    db.create_all()
    yield db
    engine.dispose()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_service(database, settings, clock):
    """Build services on separate sessions, as separate requests would."""

    sessions = []

    def _build() -> WorkspaceService:
        session = database.session()
        sessions.append(session)
        return WorkspaceService(session=session, settings=settings, clock=clock)

    yield _build
    for session in sessions:
        session.close()


@pytest.fixture()
def service(make_service) -> WorkspaceService:
    return make_service()


@pytest.fixture()
def owner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def member_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def shared_workspace(service, owner_id, member_id):
    """Workspace owned by ``owner_id`` that ``member_id`` has joined."""

    workspace = service.create_workspace(
        schemas.WorkspaceCreateRequest(title="Sprint board"), owner_id
    )
    token = service.generate_invite_token(workspace.id, owner_id)
    service.accept_invite(token, member_id)
    return workspace
