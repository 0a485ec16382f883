"""Workspace access checks (owner or member)."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import ForbiddenError, NotFoundError
from .models import Workspace, WorkspaceMember

__all__ = ["has_workspace_access", "is_member", "require_workspace", "require_owner"]


def is_member(session: Session, workspace_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    member = session.execute(
        select(WorkspaceMember.user_id).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == user_id,
        )
    ).first()
    return member is not None


def has_workspace_access(
    session: Session, workspace_id: uuid.UUID, user_id: uuid.UUID
) -> bool:
    """Return ``True`` when *user_id* owns or is a member of the workspace."""

    owner_id = session.execute(
        select(Workspace.owner_id).where(Workspace.id == workspace_id)
    ).scalar_one_or_none()
    if owner_id is None:
        return False
    if owner_id == user_id:
        return True
    return is_member(session, workspace_id, user_id)


def require_workspace(
    session: Session, workspace_id: uuid.UUID, user_id: uuid.UUID
) -> Workspace:
    """Load a workspace the user may act on.

    Missing and inaccessible workspaces raise the same ``NotFoundError`` so a
    non-member cannot probe for existence.
    """

    workspace = session.get(Workspace, workspace_id)
    if workspace is None:
        raise NotFoundError("Workspace not found")
    if workspace.owner_id != user_id and not is_member(session, workspace_id, user_id):
        raise NotFoundError("Workspace not found")
    return workspace


def require_owner(
    session: Session, workspace_id: uuid.UUID, user_id: uuid.UUID
) -> Workspace:
    workspace = require_workspace(session, workspace_id, user_id)
    if workspace.owner_id != user_id:
        raise ForbiddenError("Only the workspace owner can do this")
    return workspace
