"""Service layer for workspace management.

비즈니스 로직:
- 워크스페이스/멤버 수명주기
- 편집 잠금 (lease)
- 컬럼/카드/로드맵 순서 유지

Every content mutation is decorated with :func:`~.dispatch.mutation`, which
runs the access and lease checks and rolls the session back on failure. Each
method commits exactly once.
"""

from __future__ import annotations

import datetime as dt
import json
import os
import secrets
import sys
import uuid
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import structlog
from sqlalchemy import create_engine, delete, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from . import ordering, schemas
from .access import has_workspace_access, require_owner, require_workspace
from .constants import (
    DEFAULT_COLUMN_TITLE,
    DEFAULT_LOCK_TIMEOUT_SECONDS,
    DEFAULT_RATE_LIMIT_MAX_REQUESTS,
    DEFAULT_RATE_LIMIT_WINDOW_SECONDS,
    MAX_CARDS_PER_USER,
    MAX_COLUMNS_PER_WORKSPACE,
    MAX_ROADMAP_NODES,
    MAX_TOOLS_PER_SCOPE,
)
from .dispatch import (
    direct,
    from_input,
    mutation,
    via_card,
    via_column,
    via_roadmap,
    via_roadmap_node,
    via_tool,
)
from .errors import BadRequestError, ForbiddenError, InvalidTargetError, NotFoundError
from .locks import LockManager, as_utc, utcnow
from .models import (
    Base,
    Card,
    Column,
    Roadmap,
    RoadmapNode,
    Tool,
    User,
    Workspace,
    WorkspaceMember,
    WorkspacePin,
)

__all__ = ["WorkspaceSettings", "WorkspaceDatabase", "WorkspaceService", "init_engine"]

logger = structlog.get_logger(__name__)

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///./dayflow.db"

# Position past the end of any container; clamped on insert.
END = sys.maxsize


@dataclass(slots=True)
class WorkspaceSettings:
    """Workspace 서비스 설정."""

    database_url: str = DEFAULT_DATABASE_URL
    lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    rate_limit_window_seconds: float = DEFAULT_RATE_LIMIT_WINDOW_SECONDS
    rate_limit_max_requests: int = DEFAULT_RATE_LIMIT_MAX_REQUESTS
    environment: str = "development"

    @classmethod
    def from_env(cls) -> WorkspaceSettings:
        database_url = (
            os.getenv("DAYFLOW_DB_URL") or os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL
        )
        return cls(
            database_url=database_url,
            lock_timeout_seconds=float(
                os.getenv("DAYFLOW_LOCK_TIMEOUT_SECONDS", DEFAULT_LOCK_TIMEOUT_SECONDS)
            ),
            rate_limit_window_seconds=float(
                os.getenv("DAYFLOW_RATE_LIMIT_WINDOW_SECONDS", DEFAULT_RATE_LIMIT_WINDOW_SECONDS)
            ),
            rate_limit_max_requests=int(
                os.getenv("DAYFLOW_RATE_LIMIT_MAX_REQUESTS", DEFAULT_RATE_LIMIT_MAX_REQUESTS)
            ),
            environment=os.getenv("DAYFLOW_ENV", "development").lower(),
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def init_engine(settings: WorkspaceSettings) -> Engine:
    """SQLAlchemy 엔진 초기화."""
    # SQLAlchemy 1.4+ requires 'postgresql://' not 'postgres://'
    database_url = settings.database_url
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql+psycopg://", 1)
    elif database_url.startswith("postgresql://") and "+psycopg" not in database_url:
        database_url = database_url.replace("postgresql://", "postgresql+psycopg://", 1)

    if database_url.startswith("sqlite"):
        options: dict = {"connect_args": {"check_same_thread": False}}
        # An in-memory database only exists on the connection that created it.
        if ":memory:" in database_url or database_url.rstrip("/").endswith("sqlite+pysqlite:"):
            options["poolclass"] = StaticPool
        return create_engine(database_url, echo=False, **options)

    return create_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


class WorkspaceDatabase:
    """데이터베이스 세션 관리."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    def session(self) -> Session:
        return self._session_factory()

    def create_all(self):
        """테이블 생성 (개발용)."""
        Base.metadata.create_all(self.engine)


def _card_container(card: Card) -> ordering.Container:
    if card.column_id is not None:
        return ordering.column_cards(card.column_id)
    return ordering.backlog_cards(card.workspace_id)


def _validate_payload(payload: Optional[str]) -> str:
    if payload is None:
        return "{}"
    try:
        json.loads(payload)
    except ValueError:
        raise BadRequestError("Card payload must be valid JSON") from None
    return payload


class WorkspaceService:
    """Workspace 비즈니스 로직."""

    def __init__(
        self,
        session: Session,
        settings: WorkspaceSettings,
        clock: Optional[Callable[[], dt.datetime]] = None,
    ):
        self.session = session
        self.settings = settings
        self.clock = clock or utcnow
        self.locks = LockManager(
            session, dt.timedelta(seconds=settings.lock_timeout_seconds), self.clock
        )

    def _now(self) -> dt.datetime:
        return self.clock()

    # ========================================================================
    # 사용자
    # ========================================================================

    def ensure_user(self, user_id: uuid.UUID, email: Optional[str] = None) -> User:
        """요청 identity로 사용자 레코드 upsert."""
        user = self.session.get(User, user_id)
        if user is None:
            user = User(id=user_id, email=email, created_at=self._now())
            self.session.add(user)
            self.session.commit()
            logger.info("user.created", user_id=str(user_id))
        elif email and user.email != email:
            user.email = email
            self.session.commit()
        return user

    @mutation("update_profile")
    def update_profile(
        self, request: schemas.ProfileUpdateRequest, user_id: uuid.UUID
    ) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            user = User(id=user_id, created_at=self._now())
            self.session.add(user)
        if request.email is not None:
            user.email = request.email
        if request.display_name is not None:
            user.display_name = request.display_name
        if request.avatar_url is not None:
            user.avatar_url = request.avatar_url
        self.session.commit()
        return user

    def user_stats(self, user_id: uuid.UUID) -> schemas.UserStatsResponse:
        """사용자 카드 통계.

        Completed cards across everything the user owns, plus total and
        completed counts of the user's own cards in each workspace they own.
        """
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")

        total_completed = self.session.execute(
            select(func.count())
            .select_from(Card)
            .where(Card.owner_id == user_id, Card.done.is_(True))
        ).scalar_one()
        workspaces = list(
            self.session.execute(
                select(Workspace)
                .where(Workspace.owner_id == user_id)
                .order_by(Workspace.created_at.desc(), Workspace.id)
            ).scalars()
        )

        def counts(*criteria) -> dict[uuid.UUID, int]:
            if not workspaces:
                return {}
            stmt = (
                select(Card.workspace_id, func.count())
                .where(
                    Card.owner_id == user_id,
                    Card.workspace_id.in_([w.id for w in workspaces]),
                    *criteria,
                )
                .group_by(Card.workspace_id)
            )
            return {workspace_id: count for workspace_id, count in self.session.execute(stmt)}

        totals = counts()
        completed = counts(Card.done.is_(True))
        return schemas.UserStatsResponse(
            id=user.id,
            avatar_url=user.avatar_url,
            total_completed_cards=total_completed,
            workspace_stats=[
                schemas.WorkspaceStatsResponse(
                    id=w.id,
                    title=w.title,
                    description=w.description,
                    icon=w.icon,
                    total_cards=totals.get(w.id, 0),
                    completed_cards=completed.get(w.id, 0),
                )
                for w in workspaces
            ],
        )

    # ========================================================================
    # 워크스페이스
    # ========================================================================

    @mutation("create_workspace")
    def create_workspace(
        self, request: schemas.WorkspaceCreateRequest, user_id: uuid.UUID
    ) -> Workspace:
        """워크스페이스 생성 (기본 컬럼 포함)."""
        now = self._now()
        workspace = Workspace(
            owner_id=user_id,
            title=request.title,
            description=request.description,
            icon=request.icon,
            created_at=now,
            updated_at=now,
        )
        self.session.add(workspace)
        self.session.flush()

        self.session.add(
            Column(
                workspace_id=workspace.id,
                title=DEFAULT_COLUMN_TITLE,
                order=0,
                created_at=now,
            )
        )
        self.session.commit()
        logger.info("workspace.created", workspace_id=str(workspace.id), user_id=str(user_id))
        return workspace

    def get_workspace(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> Workspace:
        """워크스페이스 조회."""
        return require_workspace(self.session, workspace_id, user_id)

    def list_workspaces(self, user_id: uuid.UUID) -> list[Workspace]:
        """Owned and shared workspaces, the viewer's pins first, then newest."""
        member_of = select(WorkspaceMember.workspace_id).where(
            WorkspaceMember.user_id == user_id
        )
        stmt = select(Workspace).where(
            or_(Workspace.owner_id == user_id, Workspace.id.in_(member_of))
        )
        workspaces = list(self.session.execute(stmt).scalars())
        pinned = self._pinned_ids(user_id)
        workspaces.sort(key=lambda w: str(w.id))
        workspaces.sort(key=lambda w: as_utc(w.created_at), reverse=True)
        workspaces.sort(key=lambda w: w.id not in pinned)
        return workspaces

    @mutation("update_workspace", resolve=direct())
    def update_workspace(
        self,
        workspace_id: uuid.UUID,
        request: schemas.WorkspaceUpdateRequest,
        user_id: uuid.UUID,
    ) -> Workspace:
        """워크스페이스 수정."""
        workspace = require_workspace(self.session, workspace_id, user_id)
        if request.title is not None:
            workspace.title = request.title
        if request.description is not None:
            workspace.description = request.description
        if request.icon is not None:
            workspace.icon = request.icon
        workspace.updated_at = self._now()
        self.session.commit()
        return workspace

    @mutation("delete_workspace")
    def delete_workspace(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> Workspace:
        """워크스페이스 삭제 (소유자 전용)."""
        workspace = require_owner(self.session, workspace_id, user_id)
        roadmap_ids = select(Roadmap.id).where(Roadmap.workspace_id == workspace_id)
        self.session.execute(delete(RoadmapNode).where(RoadmapNode.roadmap_id.in_(roadmap_ids)))
        self.session.execute(delete(Roadmap).where(Roadmap.workspace_id == workspace_id))
        self.session.execute(delete(Card).where(Card.workspace_id == workspace_id))
        self.session.execute(delete(Column).where(Column.workspace_id == workspace_id))
        self.session.execute(delete(Tool).where(Tool.workspace_id == workspace_id))
        self.session.execute(
            delete(WorkspaceMember).where(WorkspaceMember.workspace_id == workspace_id)
        )
        self.session.execute(delete(WorkspacePin).where(WorkspacePin.workspace_id == workspace_id))
        self.session.delete(workspace)
        self.session.commit()
        logger.info("workspace.deleted", workspace_id=str(workspace_id), user_id=str(user_id))
        return workspace

    @mutation("toggle_workspace_pinned")
    def toggle_workspace_pinned(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Flip the caller's own pin; returns the new state."""
        require_workspace(self.session, workspace_id, user_id)
        pin = self.session.get(WorkspacePin, (workspace_id, user_id))
        if pin is None:
            self.session.add(
                WorkspacePin(workspace_id=workspace_id, user_id=user_id, created_at=self._now())
            )
            pinned = True
        else:
            self.session.delete(pin)
            pinned = False
        self.session.commit()
        return pinned

    def _pinned_ids(self, user_id: uuid.UUID) -> set[uuid.UUID]:
        stmt = select(WorkspacePin.workspace_id).where(WorkspacePin.user_id == user_id)
        return set(self.session.execute(stmt).scalars())

    # ========================================================================
    # 공유
    # ========================================================================

    @mutation("generate_invite_token")
    def generate_invite_token(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> str:
        """초대 토큰 (재)발급."""
        workspace = require_owner(self.session, workspace_id, user_id)
        workspace.invite_token = secrets.token_urlsafe(24)
        self.session.commit()
        logger.info("workspace.invite_issued", workspace_id=str(workspace_id))
        return workspace.invite_token

    @mutation("accept_invite")
    def accept_invite(self, token: str, user_id: uuid.UUID) -> Workspace:
        """초대 수락. Already having access is not an error."""
        workspace = self.session.execute(
            select(Workspace).where(Workspace.invite_token == token)
        ).scalar_one_or_none()
        if workspace is None:
            raise NotFoundError("Invite not found")
        if has_workspace_access(self.session, workspace.id, user_id):
            return workspace

        self.session.add(
            WorkspaceMember(
                workspace_id=workspace.id,
                user_id=user_id,
                invited_by=workspace.owner_id,
                joined_at=self._now(),
            )
        )
        self.session.commit()
        logger.info("workspace.member_joined", workspace_id=str(workspace.id), user_id=str(user_id))
        return workspace

    def list_members(
        self, workspace_id: uuid.UUID, user_id: uuid.UUID
    ) -> list[WorkspaceMember]:
        require_workspace(self.session, workspace_id, user_id)
        stmt = (
            select(WorkspaceMember)
            .where(WorkspaceMember.workspace_id == workspace_id)
            .order_by(WorkspaceMember.joined_at, WorkspaceMember.user_id)
        )
        return list(self.session.execute(stmt).scalars())

    @mutation("remove_workspace_member")
    def remove_workspace_member(
        self, workspace_id: uuid.UUID, member_id: uuid.UUID, user_id: uuid.UUID
    ) -> None:
        """멤버 제거.

        The owner may remove anyone but themself; a member may only leave.
        A removed member who holds the lease loses it in the same commit.
        """
        workspace = require_workspace(self.session, workspace_id, user_id)
        if member_id == workspace.owner_id:
            raise BadRequestError("The owner cannot be removed from a workspace")
        if user_id != workspace.owner_id and member_id != user_id:
            raise ForbiddenError("Only the workspace owner can remove other members")

        member = self.session.get(WorkspaceMember, (workspace_id, member_id))
        if member is None:
            raise NotFoundError("Member not found")
        self.session.delete(member)
        self.session.execute(
            delete(WorkspacePin).where(
                WorkspacePin.workspace_id == workspace_id, WorkspacePin.user_id == member_id
            )
        )
        self.locks.drop_holder(workspace_id, member_id)
        self.session.commit()
        logger.info(
            "workspace.member_removed",
            workspace_id=str(workspace_id),
            member_id=str(member_id),
            user_id=str(user_id),
        )

    # ========================================================================
    # 편집 잠금
    # ========================================================================

    @mutation("acquire_workspace_lock", resolve=direct())
    def acquire_workspace_lock(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> Workspace:
        return self.locks.acquire(workspace_id, user_id)

    @mutation("release_workspace_lock", resolve=direct())
    def release_workspace_lock(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> Workspace:
        return self.locks.release(workspace_id, user_id)

    @mutation("heartbeat_workspace_lock", resolve=direct())
    def heartbeat_workspace_lock(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        return self.locks.heartbeat(workspace_id, user_id)

    @mutation("transfer_workspace_lock", resolve=direct())
    def transfer_workspace_lock(
        self, workspace_id: uuid.UUID, to_user_id: uuid.UUID, user_id: uuid.UUID
    ) -> Workspace:
        return self.locks.transfer(workspace_id, user_id, to_user_id)

    def lease_holder(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> Optional[uuid.UUID]:
        """Live holder as seen now; ``None`` once the lease has expired."""
        self.locks.refresh(workspace_id)
        workspace = require_workspace(self.session, workspace_id, user_id)
        return self.locks.holder(workspace)

    # ========================================================================
    # 컬럼
    # ========================================================================

    def _column(self, column_id: uuid.UUID, user_id: uuid.UUID) -> Column:
        column = self.session.get(Column, column_id)
        if column is None or not has_workspace_access(
            self.session, column.workspace_id, user_id
        ):
            raise NotFoundError("Column not found")
        return column

    def list_columns(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> list[Column]:
        require_workspace(self.session, workspace_id, user_id)
        return ordering.members(self.session, ordering.workspace_columns(workspace_id))

    @mutation("create_column", resolve=direct())
    def create_column(
        self,
        workspace_id: uuid.UUID,
        request: schemas.ColumnCreateRequest,
        user_id: uuid.UUID,
    ) -> Column:
        """컬럼 생성 (맨 뒤에 추가)."""
        require_workspace(self.session, workspace_id, user_id)
        container = ordering.workspace_columns(workspace_id)
        if ordering.size(self.session, container) >= MAX_COLUMNS_PER_WORKSPACE:
            raise BadRequestError(
                f"A workspace can have at most {MAX_COLUMNS_PER_WORKSPACE} columns"
            )
        column = Column(
            workspace_id=workspace_id,
            title=request.title,
            color=request.color,
            hide_completed=request.hide_completed,
            created_at=self._now(),
        )
        ordering.append(self.session, container, column)
        self.session.add(column)
        self.session.commit()
        return column

    @mutation("update_column", resolve=via_column())
    def update_column(
        self,
        column_id: uuid.UUID,
        request: schemas.ColumnUpdateRequest,
        user_id: uuid.UUID,
    ) -> Column:
        column = self._column(column_id, user_id)
        if request.title is not None:
            column.title = request.title
        if request.color is not None:
            column.color = request.color
        if request.hide_completed is not None:
            column.hide_completed = request.hide_completed
        self.session.commit()
        return column

    @mutation("delete_column", resolve=via_column())
    def delete_column(self, column_id: uuid.UUID, user_id: uuid.UUID) -> Column:
        """컬럼 삭제. Its cards go with it."""
        column = self._column(column_id, user_id)
        self.session.execute(delete(Card).where(Card.column_id == column_id))
        ordering.remove(self.session, ordering.workspace_columns(column.workspace_id), column)
        self.session.delete(column)
        self.session.commit()
        logger.info(
            "column.deleted", workspace_id=str(column.workspace_id), column_id=str(column_id)
        )
        return column

    @mutation("reorder_columns", resolve=direct())
    def reorder_columns(
        self,
        workspace_id: uuid.UUID,
        ordered_ids: Sequence[uuid.UUID],
        user_id: uuid.UUID,
    ) -> list[Column]:
        require_workspace(self.session, workspace_id, user_id)
        columns = ordering.apply_order(
            self.session, ordering.workspace_columns(workspace_id), ordered_ids
        )
        self.session.commit()
        return columns

    @mutation("move_column", resolve=via_column())
    def move_column(self, column_id: uuid.UUID, order: int, user_id: uuid.UUID) -> Column:
        column = self._column(column_id, user_id)
        ordering.reorder(
            self.session, ordering.workspace_columns(column.workspace_id), column, order
        )
        self.session.commit()
        return column

    # ========================================================================
    # 카드
    # ========================================================================

    def _card(self, card_id: uuid.UUID, user_id: uuid.UUID) -> Card:
        card = self.session.get(Card, card_id)
        if card is None:
            raise NotFoundError("Card not found")
        if card.workspace_id is None:
            if card.owner_id != user_id:
                raise NotFoundError("Card not found")
        elif not has_workspace_access(self.session, card.workspace_id, user_id):
            raise NotFoundError("Card not found")
        return card

    def get_card(self, card_id: uuid.UUID, user_id: uuid.UUID) -> Card:
        return self._card(card_id, user_id)

    @mutation("create_card", resolve=from_input())
    def create_card(self, request: schemas.CardCreateRequest, user_id: uuid.UUID) -> Card:
        """카드 생성: 컬럼, 백로그, 또는 허브."""
        workspace_id = request.workspace_id
        if request.column_id is not None:
            column = self.session.get(Column, request.column_id)
            if column is None or (
                workspace_id is not None and column.workspace_id != workspace_id
            ):
                raise InvalidTargetError("Column does not belong to this workspace")
            workspace_id = column.workspace_id
        if workspace_id is not None:
            require_workspace(self.session, workspace_id, user_id)

        owned = self.session.execute(
            select(func.count()).select_from(Card).where(Card.owner_id == user_id)
        ).scalar_one()
        if owned >= MAX_CARDS_PER_USER:
            raise BadRequestError(f"You can have at most {MAX_CARDS_PER_USER} cards")

        now = self._now()
        card = Card(
            owner_id=user_id,
            workspace_id=workspace_id,
            column_id=request.column_id,
            type=request.type,
            title=request.title,
            payload=_validate_payload(request.payload),
            tags=list(request.tags),
            learning_status=request.learning_status,
            created_at=now,
            updated_at=now,
        )
        if workspace_id is not None:
            ordering.append(self.session, _card_container(card), card)
        self.session.add(card)
        self.session.commit()
        return card

    @mutation("update_card", resolve=via_card())
    def update_card(
        self,
        card_id: uuid.UUID,
        request: schemas.CardUpdateRequest,
        user_id: uuid.UUID,
    ) -> Card:
        """카드 수정. A column/order change is applied as a move."""
        card = self._card(card_id, user_id)
        if request.title is not None:
            card.title = request.title
        if request.done is not None:
            card.done = request.done
        if request.payload is not None:
            card.payload = _validate_payload(request.payload)
        if request.tags is not None:
            card.tags = list(request.tags)
        if request.learning_status is not None:
            card.learning_status = request.learning_status

        if request.requests_move():
            column_id = request.column_id if "column_id" in request.model_fields_set else card.column_id
            if request.order is not None:
                position = request.order
            elif column_id == card.column_id:
                position = card.order
            else:
                position = END
            self._relocate_card(card, column_id, position)

        card.updated_at = self._now()
        self.session.commit()
        return card

    @mutation("delete_card", resolve=via_card())
    def delete_card(self, card_id: uuid.UUID, user_id: uuid.UUID) -> Card:
        card = self._card(card_id, user_id)
        if card.workspace_id is not None:
            ordering.remove(self.session, _card_container(card), card)
        self.session.delete(card)
        self.session.commit()
        return card

    @mutation("toggle_card_done", resolve=via_card())
    def toggle_card_done(self, card_id: uuid.UUID, user_id: uuid.UUID) -> Card:
        card = self._card(card_id, user_id)
        card.done = not card.done
        card.updated_at = self._now()
        self.session.commit()
        return card

    @mutation("move_card", resolve=via_card())
    def move_card(
        self,
        card_id: uuid.UUID,
        column_id: Optional[uuid.UUID],
        order: int,
        user_id: uuid.UUID,
    ) -> Card:
        """Move a card to *column_id* (``None`` = backlog) at *order*."""
        card = self._card(card_id, user_id)
        self._relocate_card(card, column_id, order)
        card.updated_at = self._now()
        self.session.commit()
        return card

    def _relocate_card(self, card: Card, column_id: Optional[uuid.UUID], position: int) -> int:
        if card.workspace_id is None:
            raise InvalidTargetError("Hub cards have no position")
        if column_id is not None:
            column = self.session.get(Column, column_id)
            if column is None or column.workspace_id != card.workspace_id:
                raise InvalidTargetError("Target column does not belong to this workspace")
            destination = ordering.column_cards(column_id)
        else:
            destination = ordering.backlog_cards(card.workspace_id)

        def relocate(entity: Card) -> None:
            entity.column_id = column_id

        writes = ordering.move(
            self.session, card, _card_container(card), destination, position, relocate
        )
        logger.debug(
            "card.moved",
            card_id=str(card.id),
            destination=destination.label,
            position=position,
            writes=writes,
        )
        return writes

    def list_cards(self, filters: schemas.CardFilter, user_id: uuid.UUID) -> list[Card]:
        """카드 목록.

        With a workspace or column filter, that workspace's cards; otherwise
        the caller's hub cards.
        """
        stmt = select(Card)
        if filters.column_id is not None:
            column = self._column(filters.column_id, user_id)
            stmt = stmt.where(Card.column_id == column.id).order_by(Card.order)
        elif filters.workspace_id is not None:
            require_workspace(self.session, filters.workspace_id, user_id)
            stmt = stmt.where(Card.workspace_id == filters.workspace_id).order_by(
                Card.column_id, Card.order
            )
        else:
            stmt = stmt.where(Card.owner_id == user_id, Card.workspace_id.is_(None)).order_by(
                Card.created_at.desc()
            )

        if filters.type is not None:
            stmt = stmt.where(Card.type == filters.type)
        if filters.done is not None:
            stmt = stmt.where(Card.done == filters.done)
        if filters.search:
            stmt = stmt.where(Card.title.ilike(f"%{filters.search}%"))
        return list(self.session.execute(stmt).scalars())

    # ========================================================================
    # 도구
    # ========================================================================

    def _tool(self, tool_id: uuid.UUID, user_id: uuid.UUID) -> Tool:
        tool = self.session.get(Tool, tool_id)
        if tool is None:
            raise NotFoundError("Tool not found")
        if tool.workspace_id is None:
            if tool.owner_id != user_id:
                raise NotFoundError("Tool not found")
        elif not has_workspace_access(self.session, tool.workspace_id, user_id):
            raise NotFoundError("Tool not found")
        return tool

    def list_tools(
        self, user_id: uuid.UUID, workspace_id: Optional[uuid.UUID] = None
    ) -> list[Tool]:
        if workspace_id is not None:
            require_workspace(self.session, workspace_id, user_id)
            stmt = select(Tool).where(Tool.workspace_id == workspace_id)
        else:
            stmt = select(Tool).where(Tool.owner_id == user_id, Tool.workspace_id.is_(None))
        return list(self.session.execute(stmt.order_by(Tool.created_at, Tool.id)).scalars())

    @mutation("create_tool", resolve=from_input())
    def create_tool(self, request: schemas.ToolCreateRequest, user_id: uuid.UUID) -> Tool:
        if request.workspace_id is not None:
            require_workspace(self.session, request.workspace_id, user_id)
            scope = Tool.workspace_id == request.workspace_id
        else:
            scope = (Tool.owner_id == user_id) & Tool.workspace_id.is_(None)
        count = self.session.execute(
            select(func.count()).select_from(Tool).where(scope)
        ).scalar_one()
        if count >= MAX_TOOLS_PER_SCOPE:
            raise BadRequestError(f"At most {MAX_TOOLS_PER_SCOPE} tools are allowed here")

        now = self._now()
        tool = Tool(
            owner_id=user_id,
            workspace_id=request.workspace_id,
            title=request.title,
            link=request.link,
            description=request.description,
            icon=request.icon,
            tags=list(request.tags),
            created_at=now,
            updated_at=now,
        )
        self.session.add(tool)
        self.session.commit()
        return tool

    @mutation("update_tool", resolve=via_tool())
    def update_tool(
        self, tool_id: uuid.UUID, request: schemas.ToolUpdateRequest, user_id: uuid.UUID
    ) -> Tool:
        tool = self._tool(tool_id, user_id)
        for field in ("title", "link", "description", "icon"):
            value = getattr(request, field)
            if value is not None:
                setattr(tool, field, value)
        if request.tags is not None:
            tool.tags = list(request.tags)
        tool.updated_at = self._now()
        self.session.commit()
        return tool

    @mutation("delete_tool", resolve=via_tool())
    def delete_tool(self, tool_id: uuid.UUID, user_id: uuid.UUID) -> Tool:
        tool = self._tool(tool_id, user_id)
        self.session.delete(tool)
        self.session.commit()
        return tool

    # ========================================================================
    # 로드맵
    # ========================================================================

    def get_roadmap_by_id(self, roadmap_id: uuid.UUID, user_id: uuid.UUID) -> Roadmap:
        roadmap = self.session.get(Roadmap, roadmap_id)
        if roadmap is None or not has_workspace_access(
            self.session, roadmap.workspace_id, user_id
        ):
            raise NotFoundError("Roadmap not found")
        return roadmap

    def _node(self, node_id: uuid.UUID, user_id: uuid.UUID) -> RoadmapNode:
        node = self.session.get(RoadmapNode, node_id)
        if node is None:
            raise NotFoundError("Roadmap node not found")
        self.get_roadmap_by_id(node.roadmap_id, user_id)
        return node

    def _parent_in(self, roadmap_id: uuid.UUID, parent_id: Optional[uuid.UUID]) -> None:
        if parent_id is None:
            return
        parent = self.session.get(RoadmapNode, parent_id)
        if parent is None or parent.roadmap_id != roadmap_id:
            raise InvalidTargetError("Parent node does not belong to this roadmap")

    def get_roadmap(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> Roadmap:
        require_workspace(self.session, workspace_id, user_id)
        roadmap = self.session.execute(
            select(Roadmap).where(Roadmap.workspace_id == workspace_id)
        ).scalar_one_or_none()
        if roadmap is None:
            raise NotFoundError("Roadmap not found")
        return roadmap

    @mutation("create_roadmap", resolve=direct())
    def create_roadmap(
        self,
        workspace_id: uuid.UUID,
        request: schemas.RoadmapCreateRequest,
        user_id: uuid.UUID,
    ) -> Roadmap:
        """로드맵 생성 (워크스페이스당 하나)."""
        require_workspace(self.session, workspace_id, user_id)
        existing = self.session.execute(
            select(Roadmap.id).where(Roadmap.workspace_id == workspace_id)
        ).first()
        if existing is not None:
            raise BadRequestError("This workspace already has a roadmap")
        now = self._now()
        roadmap = Roadmap(
            workspace_id=workspace_id,
            owner_id=user_id,
            title=request.title,
            source_text=request.source_text,
            created_at=now,
            updated_at=now,
        )
        self.session.add(roadmap)
        self.session.commit()
        return roadmap

    @mutation("delete_roadmap", resolve=via_roadmap())
    def delete_roadmap(self, roadmap_id: uuid.UUID, user_id: uuid.UUID) -> Roadmap:
        roadmap = self.get_roadmap_by_id(roadmap_id, user_id)
        self.session.execute(delete(RoadmapNode).where(RoadmapNode.roadmap_id == roadmap_id))
        self.session.delete(roadmap)
        self.session.commit()
        return roadmap

    @mutation("create_roadmap_node", resolve=via_roadmap())
    def create_roadmap_node(
        self,
        roadmap_id: uuid.UUID,
        request: schemas.RoadmapNodeCreateRequest,
        user_id: uuid.UUID,
    ) -> RoadmapNode:
        self.get_roadmap_by_id(roadmap_id, user_id)
        self._parent_in(roadmap_id, request.parent_id)
        count = self.session.execute(
            select(func.count()).select_from(RoadmapNode).where(RoadmapNode.roadmap_id == roadmap_id)
        ).scalar_one()
        if count >= MAX_ROADMAP_NODES:
            raise BadRequestError(f"A roadmap can have at most {MAX_ROADMAP_NODES} nodes")

        now = self._now()
        node = RoadmapNode(
            roadmap_id=roadmap_id,
            parent_id=request.parent_id,
            title=request.title,
            created_at=now,
            updated_at=now,
        )
        ordering.append(self.session, ordering.sibling_nodes(roadmap_id, request.parent_id), node)
        self.session.add(node)
        self.session.commit()
        return node

    @mutation("update_roadmap_node", resolve=via_roadmap_node())
    def update_roadmap_node(
        self,
        node_id: uuid.UUID,
        request: schemas.RoadmapNodeUpdateRequest,
        user_id: uuid.UUID,
    ) -> RoadmapNode:
        node = self._node(node_id, user_id)
        if request.title is not None:
            node.title = request.title
        if request.done is not None:
            node.done = request.done
        node.updated_at = self._now()
        self.session.commit()
        return node

    @mutation("delete_roadmap_node", resolve=via_roadmap_node())
    def delete_roadmap_node(self, node_id: uuid.UUID, user_id: uuid.UUID) -> int:
        """Delete a node with its whole subtree; returns how many rows went."""
        node = self._node(node_id, user_id)
        doomed = [node.id]
        frontier = [node.id]
        while frontier:
            frontier = list(
                self.session.execute(
                    select(RoadmapNode.id).where(RoadmapNode.parent_id.in_(frontier))
                ).scalars()
            )
            doomed.extend(frontier)

        ordering.remove(
            self.session, ordering.sibling_nodes(node.roadmap_id, node.parent_id), node
        )
        self.session.execute(delete(RoadmapNode).where(RoadmapNode.id.in_(doomed)))
        self.session.commit()
        return len(doomed)

    @mutation("move_roadmap_node", resolve=via_roadmap_node())
    def move_roadmap_node(
        self,
        node_id: uuid.UUID,
        parent_id: Optional[uuid.UUID],
        order: int,
        user_id: uuid.UUID,
    ) -> RoadmapNode:
        """Re-parent and/or reposition a node among its new siblings."""
        node = self._node(node_id, user_id)
        self._parent_in(node.roadmap_id, parent_id)

        ancestor_id = parent_id
        while ancestor_id is not None:
            if ancestor_id == node.id:
                raise InvalidTargetError("A node cannot be moved under itself")
            ancestor_id = self.session.execute(
                select(RoadmapNode.parent_id).where(RoadmapNode.id == ancestor_id)
            ).scalar_one_or_none()

        def relocate(entity: RoadmapNode) -> None:
            entity.parent_id = parent_id

        ordering.move(
            self.session,
            node,
            ordering.sibling_nodes(node.roadmap_id, node.parent_id),
            ordering.sibling_nodes(node.roadmap_id, parent_id),
            order,
            relocate,
        )
        node.updated_at = self._now()
        self.session.commit()
        return node

    @mutation("reorder_roadmap_nodes", resolve=via_roadmap())
    def reorder_roadmap_nodes(
        self,
        roadmap_id: uuid.UUID,
        parent_id: Optional[uuid.UUID],
        ordered_ids: Sequence[uuid.UUID],
        user_id: uuid.UUID,
    ) -> list[RoadmapNode]:
        self.get_roadmap_by_id(roadmap_id, user_id)
        self._parent_in(roadmap_id, parent_id)
        nodes = ordering.apply_order(
            self.session, ordering.sibling_nodes(roadmap_id, parent_id), ordered_ids
        )
        self.session.commit()
        return nodes

    def roadmap_tree(self, roadmap: Roadmap) -> list[schemas.RoadmapNodeResponse]:
        """Nested node tree built from the flat table, one level at a time."""
        nodes = self.session.execute(
            select(RoadmapNode)
            .where(RoadmapNode.roadmap_id == roadmap.id)
            .order_by(RoadmapNode.order, RoadmapNode.created_at, RoadmapNode.id)
        ).scalars()
        children: dict[Optional[uuid.UUID], list[RoadmapNode]] = defaultdict(list)
        for node in nodes:
            children[node.parent_id].append(node)

        def build(parent_id: Optional[uuid.UUID]) -> list[schemas.RoadmapNodeResponse]:
            return [
                schemas.RoadmapNodeResponse(
                    id=node.id,
                    roadmap_id=node.roadmap_id,
                    parent_id=node.parent_id,
                    title=node.title,
                    done=node.done,
                    order=node.order,
                    children=build(node.id),
                )
                for node in children.get(parent_id, [])
            ]

        return build(None)

    def roadmap_response(self, roadmap: Roadmap) -> schemas.RoadmapResponse:
        return schemas.RoadmapResponse(
            id=roadmap.id,
            workspace_id=roadmap.workspace_id,
            owner_id=roadmap.owner_id,
            title=roadmap.title,
            source_text=roadmap.source_text,
            nodes=self.roadmap_tree(roadmap),
        )

    # ========================================================================
    # 스냅샷
    # ========================================================================

    def user_response(self, user_id: Optional[uuid.UUID]) -> Optional[schemas.UserResponse]:
        if user_id is None:
            return None
        user = self.session.get(User, user_id)
        if user is None:
            return schemas.UserResponse(id=user_id)
        return schemas.UserResponse.model_validate(user)

    def member_responses(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> list[schemas.MemberResponse]:
        return [
            schemas.MemberResponse(
                user_id=member.user_id,
                invited_by=member.invited_by,
                joined_at=member.joined_at,
                user=self.user_response(member.user_id),
            )
            for member in self.list_members(workspace_id, user_id)
        ]

    def workspace_response(
        self,
        workspace: Workspace,
        user_id: uuid.UUID,
        *,
        detailed: bool = False,
        pinned: Optional[bool] = None,
    ) -> schemas.WorkspaceResponse:
        """Viewer-specific view of *workspace*; ``detailed`` adds board content."""
        state = self.locks.lease_state(workspace)
        if pinned is None:
            pinned = self.session.get(WorkspacePin, (workspace.id, user_id)) is not None
        response = schemas.WorkspaceResponse(
            id=workspace.id,
            owner_id=workspace.owner_id,
            title=workspace.title,
            description=workspace.description,
            icon=workspace.icon,
            invite_token=workspace.invite_token if workspace.owner_id == user_id else None,
            pinned=pinned,
            editing_by=state.holder,
            editing_user=self.user_response(state.holder),
            editing_expires_at=state.expires_at if state.holder else None,
            created_at=workspace.created_at,
            updated_at=workspace.updated_at,
            owner=self.user_response(workspace.owner_id),
        )
        if not detailed:
            return response

        columns = []
        for column in ordering.members(self.session, ordering.workspace_columns(workspace.id)):
            cards = ordering.members(self.session, ordering.column_cards(column.id))
            columns.append(
                schemas.ColumnResponse(
                    id=column.id,
                    workspace_id=column.workspace_id,
                    title=column.title,
                    order=column.order,
                    hide_completed=column.hide_completed,
                    color=column.color,
                    cards=[schemas.CardResponse.model_validate(card) for card in cards],
                )
            )
        backlog = ordering.members(self.session, ordering.backlog_cards(workspace.id))
        response.columns = columns
        response.backlog = [schemas.CardResponse.model_validate(card) for card in backlog]
        response.tools = [
            schemas.ToolResponse.model_validate(tool)
            for tool in self.list_tools(user_id, workspace.id)
        ]
        response.members = self.member_responses(workspace.id, user_id)
        return response

    def workspace_snapshot(
        self, workspace_id: uuid.UUID, user_id: uuid.UUID
    ) -> schemas.WorkspaceResponse:
        """Full authoritative snapshot as read by *user_id*."""
        self.locks.refresh(workspace_id)
        workspace = require_workspace(self.session, workspace_id, user_id)
        return self.workspace_response(workspace, user_id, detailed=True)

    def workspace_list_response(self, user_id: uuid.UUID) -> schemas.WorkspaceListResponse:
        workspaces = self.list_workspaces(user_id)
        pinned = self._pinned_ids(user_id)
        return schemas.WorkspaceListResponse(
            workspaces=[
                self.workspace_response(w, user_id, pinned=w.id in pinned) for w in workspaces
            ],
            total=len(workspaces),
        )
