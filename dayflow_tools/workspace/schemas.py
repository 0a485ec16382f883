"""Pydantic schemas for workspace API requests/responses."""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .constants import MAX_TITLE_LENGTH
from .schema.enums import CardType, LearningStatus

__all__ = [
    "ProfileUpdateRequest",
    "UserResponse",
    "WorkspaceStatsResponse",
    "UserStatsResponse",
    "WorkspaceCreateRequest",
    "WorkspaceUpdateRequest",
    "WorkspaceResponse",
    "WorkspaceListResponse",
    "MemberResponse",
    "PinResponse",
    "InviteResponse",
    "LockTransferRequest",
    "LockResponse",
    "ColumnCreateRequest",
    "ColumnUpdateRequest",
    "ColumnMoveRequest",
    "ColumnReorderRequest",
    "ColumnResponse",
    "CardCreateRequest",
    "CardUpdateRequest",
    "CardMoveRequest",
    "CardFilter",
    "CardResponse",
    "ToolCreateRequest",
    "ToolUpdateRequest",
    "ToolResponse",
    "RoadmapCreateRequest",
    "RoadmapNodeCreateRequest",
    "RoadmapNodeUpdateRequest",
    "RoadmapNodeMoveRequest",
    "RoadmapNodeReorderRequest",
    "RoadmapNodeResponse",
    "RoadmapResponse",
]


# ========================================================================
# Users
# ========================================================================


class ProfileUpdateRequest(BaseModel):
    email: Optional[str] = Field(None, max_length=255)
    display_name: Optional[str] = Field(None, max_length=MAX_TITLE_LENGTH)
    avatar_url: Optional[str] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


class WorkspaceStatsResponse(BaseModel):
    id: uuid.UUID
    title: str
    description: Optional[str] = None
    icon: Optional[str] = None
    total_cards: int = 0
    completed_cards: int = 0


class UserStatsResponse(BaseModel):
    """완료 카드 통계."""

    id: uuid.UUID
    avatar_url: Optional[str] = None
    total_completed_cards: int = 0
    workspace_stats: list[WorkspaceStatsResponse] = Field(default_factory=list)


# ========================================================================
# Cards
# ========================================================================


class CardCreateRequest(BaseModel):
    """카드 생성 요청.

    Without ``workspace_id``/``column_id`` the card lands in the owner's hub.
    With only ``workspace_id`` it is appended to the backlog.
    """

    type: CardType
    title: Optional[str] = Field(None, max_length=MAX_TITLE_LENGTH)
    workspace_id: Optional[uuid.UUID] = None
    column_id: Optional[uuid.UUID] = None
    payload: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    learning_status: Optional[LearningStatus] = None


class CardUpdateRequest(BaseModel):
    """카드 수정 요청.

    Setting ``column_id`` (``null`` = backlog) or ``order`` moves the card.
    """

    title: Optional[str] = Field(None, max_length=MAX_TITLE_LENGTH)
    done: Optional[bool] = None
    column_id: Optional[uuid.UUID] = None
    order: Optional[int] = Field(None, ge=0)
    payload: Optional[str] = None
    tags: Optional[list[str]] = None
    learning_status: Optional[LearningStatus] = None

    def requests_move(self) -> bool:
        return "column_id" in self.model_fields_set or self.order is not None


class CardMoveRequest(BaseModel):
    column_id: Optional[uuid.UUID] = None
    order: int = Field(0, ge=0)


class CardFilter(BaseModel):
    type: Optional[CardType] = None
    done: Optional[bool] = None
    workspace_id: Optional[uuid.UUID] = None
    column_id: Optional[uuid.UUID] = None
    search: Optional[str] = None


class CardResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: uuid.UUID
    workspace_id: Optional[uuid.UUID]
    column_id: Optional[uuid.UUID]
    order: Optional[int]
    title: Optional[str]
    done: bool
    type: CardType
    payload: str
    tags: list[str]
    learning_status: Optional[LearningStatus]
    created_at: dt.datetime
    updated_at: dt.datetime


# ========================================================================
# Columns
# ========================================================================


class ColumnCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    color: Optional[str] = Field(None, max_length=32)
    hide_completed: bool = False


class ColumnUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=MAX_TITLE_LENGTH)
    color: Optional[str] = Field(None, max_length=32)
    hide_completed: Optional[bool] = None


class ColumnMoveRequest(BaseModel):
    order: int = Field(..., ge=0)


class ColumnReorderRequest(BaseModel):
    column_ids: list[uuid.UUID]


class ColumnResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    workspace_id: uuid.UUID
    title: str
    order: int
    hide_completed: bool
    color: Optional[str]
    cards: list[CardResponse] = Field(default_factory=list)


# ========================================================================
# Tools
# ========================================================================


class ToolCreateRequest(BaseModel):
    workspace_id: Optional[uuid.UUID] = None
    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    link: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = Field(None, max_length=64)
    tags: list[str] = Field(default_factory=list)


class ToolUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=MAX_TITLE_LENGTH)
    link: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = Field(None, max_length=64)
    tags: Optional[list[str]] = None


class ToolResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: uuid.UUID
    workspace_id: Optional[uuid.UUID]
    title: str
    link: Optional[str]
    description: Optional[str]
    icon: Optional[str]
    tags: list[str]
    created_at: dt.datetime
    updated_at: dt.datetime


# ========================================================================
# Workspaces
# ========================================================================


class WorkspaceCreateRequest(BaseModel):
    """워크스페이스 생성 요청."""

    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    description: Optional[str] = None
    icon: Optional[str] = Field(None, max_length=64)


class WorkspaceUpdateRequest(BaseModel):
    """워크스페이스 수정 요청."""

    title: Optional[str] = Field(None, min_length=1, max_length=MAX_TITLE_LENGTH)
    description: Optional[str] = None
    icon: Optional[str] = Field(None, max_length=64)


class MemberResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    invited_by: Optional[uuid.UUID]
    joined_at: dt.datetime
    user: Optional[UserResponse] = None


class WorkspaceResponse(BaseModel):
    """Snapshot of a workspace as seen by one viewer.

    ``editing_by``/``editing_user`` are ``None`` once the lease has expired,
    even while the stored holder is still present. ``pinned`` is the
    viewer's own pin.
    """

    id: uuid.UUID
    owner_id: uuid.UUID
    title: str
    description: Optional[str]
    icon: Optional[str]
    invite_token: Optional[str] = None
    pinned: bool = False
    editing_by: Optional[uuid.UUID] = None
    editing_user: Optional[UserResponse] = None
    editing_expires_at: Optional[dt.datetime] = None
    created_at: dt.datetime
    updated_at: dt.datetime
    owner: Optional[UserResponse] = None
    members: list[MemberResponse] = Field(default_factory=list)
    columns: list[ColumnResponse] = Field(default_factory=list)
    backlog: list[CardResponse] = Field(default_factory=list)
    tools: list[ToolResponse] = Field(default_factory=list)


class WorkspaceListResponse(BaseModel):
    workspaces: list[WorkspaceResponse]
    total: int


class PinResponse(BaseModel):
    workspace_id: uuid.UUID
    pinned: bool


class InviteResponse(BaseModel):
    workspace_id: uuid.UUID
    invite_token: str


class LockTransferRequest(BaseModel):
    to_user_id: uuid.UUID


class LockResponse(BaseModel):
    workspace_id: uuid.UUID
    editing_by: Optional[uuid.UUID]
    editing_user: Optional[UserResponse] = None
    expires_at: Optional[dt.datetime] = None
    refreshed: Optional[bool] = None


# ========================================================================
# Roadmaps
# ========================================================================


class RoadmapCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    source_text: Optional[str] = None


class RoadmapNodeCreateRequest(BaseModel):
    parent_id: Optional[uuid.UUID] = None
    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)


class RoadmapNodeUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=MAX_TITLE_LENGTH)
    done: Optional[bool] = None


class RoadmapNodeMoveRequest(BaseModel):
    parent_id: Optional[uuid.UUID] = None
    order: int = Field(0, ge=0)


class RoadmapNodeReorderRequest(BaseModel):
    parent_id: Optional[uuid.UUID] = None
    node_ids: list[uuid.UUID]


class RoadmapNodeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    roadmap_id: uuid.UUID
    parent_id: Optional[uuid.UUID]
    title: str
    done: bool
    order: int
    children: list[RoadmapNodeResponse] = Field(default_factory=list)


class RoadmapResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    workspace_id: uuid.UUID
    owner_id: uuid.UUID
    title: str
    source_text: Optional[str]
    nodes: list[RoadmapNodeResponse] = Field(default_factory=list)


RoadmapNodeResponse.model_rebuild()
