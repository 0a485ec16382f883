"""Single-holder editing lease per workspace.

The lease lives in ``workspaces.editing_by``/``editing_at``. Expiry is
computed on every read by comparing the lease age to the timeout; nothing
sweeps stale leases. Every write is one conditional ``UPDATE`` so two
concurrent callers can never both win.
"""

from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

import structlog
from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from .access import has_workspace_access, require_workspace
from .errors import ForbiddenError, LockConflictError, LockNotHeldError
from .models import Workspace
from .schema.enums import LockFailure

__all__ = ["LeaseState", "LockManager", "utcnow", "as_utc"]

logger = structlog.get_logger(__name__)

Clock = Callable[[], dt.datetime]


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def as_utc(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    """Attach UTC to naive timestamps read back from SQLite."""

    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


@dataclass(frozen=True)
class LeaseState:
    """Point-in-time view of a workspace lease."""

    holder: Optional[uuid.UUID]
    stored_holder: Optional[uuid.UUID]
    acquired_at: Optional[dt.datetime]
    expires_at: Optional[dt.datetime]

    @property
    def expired(self) -> bool:
        return self.stored_holder is not None and self.holder is None


class LockManager:
    """Grant, refresh, release, and transfer workspace editing leases."""

    def __init__(
        self,
        session: Session,
        timeout: dt.timedelta,
        clock: Optional[Clock] = None,
    ):
        self.session = session
        self.timeout = timeout
        self.clock = clock or utcnow

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def lease_state(
        self, workspace: Workspace, now: Optional[dt.datetime] = None
    ) -> LeaseState:
        now = now or self.clock()
        stored = workspace.editing_by
        acquired_at = as_utc(workspace.editing_at)
        if stored is None:
            return LeaseState(None, None, None, None)
        if acquired_at is None:
            return LeaseState(None, stored, None, None)
        expires_at = acquired_at + self.timeout
        holder = stored if now < expires_at else None
        return LeaseState(holder, stored, acquired_at, expires_at)

    def holder(
        self, workspace: Workspace, now: Optional[dt.datetime] = None
    ) -> Optional[uuid.UUID]:
        """Return the live holder, or ``None`` once the lease has expired."""

        return self.lease_state(workspace, now).holder

    def assert_held(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> Workspace:
        """Fail unless *user_id* holds a live lease on the workspace."""

        self.refresh(workspace_id)
        workspace = require_workspace(self.session, workspace_id, user_id)
        state = self.lease_state(workspace)
        if state.stored_holder is None:
            reason = LockFailure.NO_LEASE
        elif state.holder is None:
            reason = LockFailure.EXPIRED
        elif state.holder != user_id:
            reason = LockFailure.HELD_BY_OTHER
        else:
            return workspace
        logger.info(
            "lock.check_failed",
            workspace_id=str(workspace_id),
            user_id=str(user_id),
            reason=reason.value,
        )
        raise LockNotHeldError(reason)

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    def acquire(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> Workspace:
        """Take the lease if it is free, already ours, or expired."""

        require_workspace(self.session, workspace_id, user_id)
        now = self.clock()
        cutoff = now - self.timeout
        stmt = (
            update(Workspace)
            .where(
                Workspace.id == workspace_id,
                or_(
                    Workspace.editing_by.is_(None),
                    Workspace.editing_by == user_id,
                    Workspace.editing_at.is_(None),
                    Workspace.editing_at <= cutoff,
                ),
            )
            .values(editing_by=user_id, editing_at=now)
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount != 1:
            self.session.rollback()
            logger.info(
                "lock.conflict", workspace_id=str(workspace_id), user_id=str(user_id)
            )
            raise LockConflictError()
        self.session.commit()
        logger.info("lock.acquired", workspace_id=str(workspace_id), user_id=str(user_id))
        return self.refresh(workspace_id)

    def release(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> Workspace:
        """Clear the lease when *user_id* holds it; otherwise do nothing."""

        require_workspace(self.session, workspace_id, user_id)
        stmt = (
            update(Workspace)
            .where(Workspace.id == workspace_id, Workspace.editing_by == user_id)
            .values(editing_by=None, editing_at=None)
            .execution_options(synchronize_session=False)
        )
        released = self.session.execute(stmt).rowcount == 1
        self.session.commit()
        if released:
            logger.info("lock.released", workspace_id=str(workspace_id), user_id=str(user_id))
        return self.refresh(workspace_id)

    def heartbeat(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Refresh a live lease held by *user_id*; return whether it was."""

        require_workspace(self.session, workspace_id, user_id)
        now = self.clock()
        stmt = (
            update(Workspace)
            .where(
                Workspace.id == workspace_id,
                Workspace.editing_by == user_id,
                Workspace.editing_at > now - self.timeout,
            )
            .values(editing_at=now)
            .execution_options(synchronize_session=False)
        )
        refreshed = self.session.execute(stmt).rowcount == 1
        self.session.commit()
        logger.debug(
            "lock.heartbeat",
            workspace_id=str(workspace_id),
            user_id=str(user_id),
            refreshed=refreshed,
        )
        return refreshed

    def transfer(
        self,
        workspace_id: uuid.UUID,
        from_user_id: uuid.UUID,
        to_user_id: uuid.UUID,
    ) -> Workspace:
        """Hand a live lease to another user who can access the workspace."""

        self.assert_held(workspace_id, from_user_id)
        if not has_workspace_access(self.session, workspace_id, to_user_id):
            raise ForbiddenError("Target user has no access to this workspace")
        now = self.clock()
        stmt = (
            update(Workspace)
            .where(
                Workspace.id == workspace_id,
                Workspace.editing_by == from_user_id,
                Workspace.editing_at > now - self.timeout,
            )
            .values(editing_by=to_user_id, editing_at=now)
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount != 1:
            self.session.rollback()
            raise LockNotHeldError(LockFailure.EXPIRED)
        self.session.commit()
        logger.info(
            "lock.transferred",
            workspace_id=str(workspace_id),
            from_user_id=str(from_user_id),
            to_user_id=str(to_user_id),
        )
        return self.refresh(workspace_id)

    def drop_holder(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """Clear the lease held by *user_id* without committing.

        Used when a member loses access while holding the lease.
        """

        self.session.execute(
            update(Workspace)
            .where(Workspace.id == workspace_id, Workspace.editing_by == user_id)
            .values(editing_by=None, editing_at=None)
            .execution_options(synchronize_session=False)
        )

    def refresh(self, workspace_id: uuid.UUID) -> Optional[Workspace]:
        return self.session.get(Workspace, workspace_id, populate_existing=True)
