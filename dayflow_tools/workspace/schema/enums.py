"""Canonical workspace enum definitions."""

from __future__ import annotations

from enum import Enum

__all__ = [
    "WorkspaceEnum",
    "CardType",
    "LearningStatus",
    "LockFailure",
    "sa_enum",
]


class WorkspaceEnum(str, Enum):
    """Base class for workspace enums stored as strings."""

    @classmethod
    def values(cls) -> tuple[str, ...]:
        return tuple(item.value for item in cls)


class CardType(WorkspaceEnum):
    NOTE = "note"
    LINK = "link"
    CHECKLIST = "checklist"


class LearningStatus(WorkspaceEnum):
    WANT_TO_REPEAT = "want_to_repeat"
    QUESTIONS_REMAIN = "questions_remain"
    DEEPEN_KNOWLEDGE = "deepen_knowledge"


class LockFailure(WorkspaceEnum):
    """Why a lease check failed."""

    NO_LEASE = "no_lease"
    EXPIRED = "expired"
    HELD_BY_OTHER = "held_by_other"


def sa_enum(enum_cls: type[WorkspaceEnum], name: str):
    """Return a SQLAlchemy ``Enum`` persisting member values, not names."""

    from sqlalchemy import Enum as SaEnum

    return SaEnum(
        enum_cls,
        name=name,
        values_callable=lambda cls: [item.value for item in cls],
        native_enum=False,
        length=32,
    )
