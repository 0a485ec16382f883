"""Lock-checking wrapper applied to every workspace-scoped mutation.

``with_lock_check`` takes a mutation handler plus an exemption predicate and
returns a handler that resolves the target workspace from the call
arguments, runs the Access Guard and asserts a live editing lease before the
handler runs. Mutations on user-global entities (hub cards and tools)
resolve to no workspace and skip the lease check.
"""

from __future__ import annotations

import functools
import inspect
import uuid
from typing import Any, Callable, Mapping, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import UnauthenticatedError
from .models import Card, Column, Roadmap, RoadmapNode, Tool

__all__ = [
    "EXEMPT_MUTATIONS",
    "is_exempt",
    "WorkspaceResolver",
    "direct",
    "from_input",
    "via_column",
    "via_card",
    "via_tool",
    "via_roadmap",
    "via_roadmap_node",
    "with_lock_check",
    "mutation",
]

logger = structlog.get_logger(__name__)

WorkspaceResolver = Callable[[Session, Mapping[str, Any]], Optional[uuid.UUID]]

EXEMPT_MUTATIONS: frozenset[str] = frozenset(
    {
        # Auth / profile
        "update_profile",
        # Workspace lifecycle
        "create_workspace",
        "delete_workspace",
        "toggle_workspace_pinned",
        # Sharing
        "generate_invite_token",
        "accept_invite",
        "remove_workspace_member",
        # Lock management
        "acquire_workspace_lock",
        "release_workspace_lock",
        "heartbeat_workspace_lock",
        "transfer_workspace_lock",
    }
)


def is_exempt(name: str) -> bool:
    return name in EXEMPT_MUTATIONS


# ----------------------------------------------------------------------
# workspace resolvers
# ----------------------------------------------------------------------


def direct(arg: str = "workspace_id") -> WorkspaceResolver:
    """The workspace id is passed as-is."""

    def resolve(session: Session, arguments: Mapping[str, Any]) -> Optional[uuid.UUID]:
        return arguments.get(arg)

    return resolve


def _lookup(session: Session, column, key_column, key) -> Optional[uuid.UUID]:
    if key is None:
        return None
    return session.execute(select(column).where(key_column == key)).scalar_one_or_none()


def via_column(arg: str = "column_id") -> WorkspaceResolver:
    def resolve(session: Session, arguments: Mapping[str, Any]) -> Optional[uuid.UUID]:
        return _lookup(session, Column.workspace_id, Column.id, arguments.get(arg))

    return resolve


def via_card(arg: str = "card_id") -> WorkspaceResolver:
    def resolve(session: Session, arguments: Mapping[str, Any]) -> Optional[uuid.UUID]:
        return _lookup(session, Card.workspace_id, Card.id, arguments.get(arg))

    return resolve


def via_tool(arg: str = "tool_id") -> WorkspaceResolver:
    def resolve(session: Session, arguments: Mapping[str, Any]) -> Optional[uuid.UUID]:
        return _lookup(session, Tool.workspace_id, Tool.id, arguments.get(arg))

    return resolve


def via_roadmap(arg: str = "roadmap_id") -> WorkspaceResolver:
    def resolve(session: Session, arguments: Mapping[str, Any]) -> Optional[uuid.UUID]:
        return _lookup(session, Roadmap.workspace_id, Roadmap.id, arguments.get(arg))

    return resolve


def via_roadmap_node(arg: str = "node_id") -> WorkspaceResolver:
    def resolve(session: Session, arguments: Mapping[str, Any]) -> Optional[uuid.UUID]:
        node_id = arguments.get(arg)
        if node_id is None:
            return None
        return session.execute(
            select(Roadmap.workspace_id)
            .join(RoadmapNode, RoadmapNode.roadmap_id == Roadmap.id)
            .where(RoadmapNode.id == node_id)
        ).scalar_one_or_none()

    return resolve


def from_input(arg: str = "request") -> WorkspaceResolver:
    """Nested input carrying ``workspace_id`` or, failing that, ``column_id``."""

    def resolve(session: Session, arguments: Mapping[str, Any]) -> Optional[uuid.UUID]:
        payload = arguments.get(arg)
        workspace_id = getattr(payload, "workspace_id", None)
        if workspace_id is not None:
            return workspace_id
        column_id = getattr(payload, "column_id", None)
        return _lookup(session, Column.workspace_id, Column.id, column_id)

    return resolve


# ----------------------------------------------------------------------
# wrapper
# ----------------------------------------------------------------------


def with_lock_check(
    handler: Callable,
    *,
    name: str,
    resolve: Optional[WorkspaceResolver],
    is_exempt: Callable[[str], bool] = is_exempt,
) -> Callable:
    """Wrap a service method so it only runs for the lease holder.

    The wrapped method must accept ``user_id``; its instance must expose
    ``session`` and ``locks``. Any exception rolls the session back so a
    mutation is applied completely or not at all.
    """

    signature = inspect.signature(handler)
    exempt = is_exempt(name)

    @functools.wraps(handler)
    def wrapper(self, *args, **kwargs):
        arguments = signature.bind(self, *args, **kwargs).arguments
        user_id = arguments.get("user_id")
        if user_id is None:
            raise UnauthenticatedError()
        try:
            if not exempt and resolve is not None:
                workspace_id = resolve(self.session, arguments)
                if workspace_id is not None:
                    self.locks.assert_held(workspace_id, user_id)
                else:
                    logger.debug("mutation.unscoped", mutation=name, user_id=str(user_id))
            return handler(self, *args, **kwargs)
        except Exception:
            self.session.rollback()
            raise

    wrapper.mutation_name = name
    wrapper.lock_exempt = exempt
    return wrapper


def mutation(name: str, resolve: Optional[WorkspaceResolver] = None):
    """Decorator form of :func:`with_lock_check` for service methods."""

    def decorator(handler: Callable) -> Callable:
        return with_lock_check(handler, name=name, resolve=resolve)

    return decorator
