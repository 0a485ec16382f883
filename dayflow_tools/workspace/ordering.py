"""Dense zero-based ordering for every ordered container.

A container is any sibling set whose ``order`` values must be exactly
``{0, ..., n-1}``: the cards of a column, a workspace backlog, the columns
of a workspace, and the children of one roadmap parent. Each operation reads
the full container, splices in memory, and writes back only the rows whose
index changed. Callers run a whole mutation in one session transaction and
commit once, so a renumbering pass is never half applied.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import InvalidTargetError
from .models import Card, Column, RoadmapNode

__all__ = [
    "Container",
    "column_cards",
    "backlog_cards",
    "workspace_columns",
    "sibling_nodes",
    "clamp",
    "splice",
    "is_dense",
    "members",
    "size",
    "renumber",
    "append",
    "reorder",
    "move",
    "remove",
    "apply_order",
]

T = TypeVar("T")


@dataclass(frozen=True, eq=False)
class Container:
    """An ordered sibling set: a model plus the criteria selecting it.

    ``label`` identifies the container; two containers with the same label
    select the same rows.
    """

    model: Any
    criteria: tuple
    label: str

    def statement(self):
        return select(self.model).where(*self.criteria).order_by(
            self.model.order, self.model.created_at, self.model.id
        )


def column_cards(column_id: uuid.UUID) -> Container:
    return Container(Card, (Card.column_id == column_id,), f"column:{column_id}")


def backlog_cards(workspace_id: uuid.UUID) -> Container:
    return Container(
        Card,
        (Card.workspace_id == workspace_id, Card.column_id.is_(None)),
        f"backlog:{workspace_id}",
    )


def workspace_columns(workspace_id: uuid.UUID) -> Container:
    return Container(Column, (Column.workspace_id == workspace_id,), f"columns:{workspace_id}")


def sibling_nodes(roadmap_id: uuid.UUID, parent_id: Optional[uuid.UUID]) -> Container:
    parent_clause = (
        RoadmapNode.parent_id.is_(None)
        if parent_id is None
        else RoadmapNode.parent_id == parent_id
    )
    return Container(
        RoadmapNode,
        (RoadmapNode.roadmap_id == roadmap_id, parent_clause),
        f"nodes:{roadmap_id}:{parent_id}",
    )


# ----------------------------------------------------------------------
# pure helpers
# ----------------------------------------------------------------------


def clamp(position: int, size: int) -> int:
    """Clamp *position* into ``[0, size - 1]`` (``0`` for empty containers)."""

    if size <= 0:
        return 0
    return max(0, min(position, size - 1))


def splice(items: Sequence[T], item: T, position: int) -> list[T]:
    """Return *items* with *item* removed and reinserted at *position*.

    *position* is clamped against the resulting length.
    """

    rest = [existing for existing in items if existing is not item]
    index = clamp(position, len(rest) + 1)
    rest.insert(index, item)
    return rest


def is_dense(orders: Iterable[Optional[int]]) -> bool:
    values = list(orders)
    return sorted(values) == list(range(len(values)))


# ----------------------------------------------------------------------
# container operations
# ----------------------------------------------------------------------


def members(session: Session, container: Container) -> list:
    return list(session.execute(container.statement()).scalars())


def size(session: Session, container: Container) -> int:
    return len(members(session, container))


def renumber(entities: Sequence) -> int:
    """Assign ``order = index`` and return how many rows actually changed."""

    writes = 0
    for index, entity in enumerate(entities):
        if entity.order != index:
            entity.order = index
            writes += 1
    return writes


def append(session: Session, container: Container, entity) -> int:
    """Place a new *entity* at the end of *container*."""

    existing = [member for member in members(session, container) if member is not entity]
    entity.order = len(existing)
    return entity.order


def reorder(session: Session, container: Container, entity, position: int) -> int:
    """Move *entity* to *position* inside its own container.

    Returns the number of rows written; moving to the current index writes
    nothing.
    """

    current = members(session, container)
    if entity not in current:
        raise InvalidTargetError(f"Entity is not part of {container.label}")
    return renumber(splice(current, entity, position))


def move(
    session: Session,
    entity,
    source: Container,
    destination: Container,
    position: int,
    relocate: Callable[[Any], None],
) -> int:
    """Move *entity* from *source* to *destination* at *position*.

    Logically a delete from *source* followed by an insert into
    *destination*; each side is renumbered on its own. *relocate* rewrites
    the entity's container fields.
    """

    if source.label == destination.label:
        return reorder(session, source, entity, position)

    target = [member for member in members(session, destination) if member is not entity]
    remaining = [member for member in members(session, source) if member is not entity]
    writes = renumber(remaining)
    relocate(entity)
    index = clamp(position, len(target) + 1)
    target.insert(index, entity)
    return writes + renumber(target)


def remove(session: Session, container: Container, entity) -> int:
    """Close the gap left by *entity*; the caller deletes the row itself."""

    remaining = [member for member in members(session, container) if member is not entity]
    return renumber(remaining)


def apply_order(
    session: Session, container: Container, ordered_ids: Sequence[uuid.UUID]
) -> list:
    """Renumber *container* from an explicit id ordering.

    Ids not in the container, or listed twice, are rejected. Members missing
    from *ordered_ids* keep their relative order after the listed ones.
    """

    current = members(session, container)
    by_id = {member.id: member for member in current}
    seen: set[uuid.UUID] = set()
    ordered = []
    for entity_id in ordered_ids:
        if entity_id in seen:
            raise InvalidTargetError(f"Duplicate id {entity_id} in ordering")
        member = by_id.get(entity_id)
        if member is None:
            raise InvalidTargetError(f"{entity_id} is not part of {container.label}")
        seen.add(entity_id)
        ordered.append(member)
    ordered.extend(member for member in current if member.id not in seen)
    renumber(ordered)
    return ordered
