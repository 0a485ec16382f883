"""Shared SQLAlchemy base and enum helpers for workspace models."""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase

from ..schema.enums import CardType, LearningStatus, sa_enum

__all__ = [
    "Base",
    "CardType",
    "LearningStatus",
    "card_type_enum",
    "learning_status_enum",
]


class Base(DeclarativeBase):
    """Declarative base class shared by all workspace models."""


# Enum helper factories -----------------------------------------------------

def card_type_enum():
    """Return a configured enum type for ``cards.type``."""

    return sa_enum(CardType, "card_type")


def learning_status_enum():
    """Return a configured enum type for ``cards.learning_status``."""

    return sa_enum(LearningStatus, "learning_status")
