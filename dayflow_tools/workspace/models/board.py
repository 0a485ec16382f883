"""Columns, cards, and tools placed on a workspace board."""

from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from ..constants import MAX_TITLE_LENGTH
from .base import Base, CardType, LearningStatus, card_type_enum, learning_status_enum

__all__ = ["Column", "Card", "Tool"]


class Column(Base):
    """Ordered list of cards inside a workspace."""

    __tablename__ = "columns"
    __table_args__ = (Index("columns_workspace_order_idx", "workspace_id", "order"),)

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(MAX_TITLE_LENGTH), nullable=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    hide_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    color: Mapped[str | None] = mapped_column(String(32))
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class Card(Base):
    """A note, link, or checklist.

    A card without ``workspace_id`` lives in its owner's hub and has no
    position. A workspace card without ``column_id`` sits in the backlog.
    """

    __tablename__ = "cards"
    __table_args__ = (
        Index("cards_column_order_idx", "column_id", "order"),
        Index("cards_workspace_idx", "workspace_id", "column_id"),
        Index("cards_owner_idx", "owner_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    workspace_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE")
    )
    column_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("columns.id", ondelete="CASCADE")
    )
    order: Mapped[int | None] = mapped_column(Integer)
    title: Mapped[str | None] = mapped_column(String(MAX_TITLE_LENGTH))
    done: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    type: Mapped[CardType] = mapped_column(card_type_enum(), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    learning_status: Mapped[LearningStatus | None] = mapped_column(learning_status_enum())
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class Tool(Base):
    """Bookmarked external tool, either in the hub or on a workspace."""

    __tablename__ = "tools"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    workspace_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE")
    )
    title: Mapped[str] = mapped_column(String(MAX_TITLE_LENGTH), nullable=False)
    link: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    icon: Mapped[str | None] = mapped_column(String(64))
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
