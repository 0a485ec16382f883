"""FastAPI application for collaborative workspaces.

워크스페이스 협업 API:
- 워크스페이스 수명주기 / 공유
- 편집 잠금 (acquire/release/heartbeat/transfer)
- 컬럼/카드/도구/로드맵
"""

from __future__ import annotations

import uuid
from typing import Callable, Generator, Optional

import structlog
from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import schemas
from .errors import LockNotHeldError, RateLimitExceededError, UnauthenticatedError, WorkspaceError
from .models import Workspace
from .ratelimit import RateLimiter
from .service import WorkspaceDatabase, WorkspaceService, WorkspaceSettings, init_engine

__all__ = ["create_app", "app_factory", "WorkspaceSettings"]

logger = structlog.get_logger(__name__)

ServiceFactory = Callable[[Session, WorkspaceSettings], WorkspaceService]


def create_app(
    settings: WorkspaceSettings | None = None,
    service_factory: Optional[ServiceFactory] = None,
) -> FastAPI:
    """Create and configure the FastAPI application for workspaces."""

    settings = settings or WorkspaceSettings.from_env()
    engine = init_engine(settings)
    database = WorkspaceDatabase(engine=engine)
    limiter = RateLimiter(settings.rate_limit_window_seconds, settings.rate_limit_max_requests)
    service_factory = service_factory or (
        lambda session, cfg: WorkspaceService(session=session, settings=cfg)
    )

    app = FastAPI(
        title="Dayflow Workspace API",
        version="1.0.0",
        description="협업 칸반 워크스페이스",
    )
    app.state.settings = settings
    app.state.database = database
    app.state.rate_limiter = limiter

    def get_session() -> Generator[Session, None, None]:
        session = database.session()
        try:
            yield session
        finally:
            session.close()

    def get_service(session: Session = Depends(get_session)) -> WorkspaceService:
        return service_factory(session, settings)

    def get_current_user(
        request: Request, service: WorkspaceService = Depends(get_service)
    ) -> uuid.UUID:
        """Identity comes from the ``X-User-ID`` header set by the auth proxy."""
        raw = request.headers.get("X-User-ID")
        if not raw:
            raise UnauthenticatedError("Authentication required")
        try:
            user_id = uuid.UUID(raw)
        except ValueError:
            raise UnauthenticatedError("Malformed user id") from None
        service.ensure_user(user_id, request.headers.get("X-User-Email"))
        return user_id

    def rate_limited(request: Request) -> None:
        key = request.headers.get("X-User-ID") or (
            request.client.host if request.client else "anonymous"
        )
        limiter.enforce(key)

    mutating = [Depends(rate_limited)]

    @app.exception_handler(WorkspaceError)
    async def _handle_workspace_error(request: Request, exc: WorkspaceError):
        content = {"code": exc.code, "detail": exc.message}
        headers = None
        if isinstance(exc, LockNotHeldError):
            content["reason"] = exc.reason.value
        if isinstance(exc, RateLimitExceededError):
            headers = {"Retry-After": str(max(1, round(exc.retry_after)))}
        return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(Exception)
    async def _handle_errors(request: Request, exc: Exception):
        logger.exception("api.unhandled_error", path=request.url.path)
        content = {"code": "INTERNAL", "detail": "Internal server error"}
        if not settings.is_production:
            content["error"] = str(exc)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)

    def lock_response(
        service: WorkspaceService, workspace: Workspace, refreshed: Optional[bool] = None
    ) -> schemas.LockResponse:
        state = service.locks.lease_state(workspace)
        return schemas.LockResponse(
            workspace_id=workspace.id,
            editing_by=state.holder,
            editing_user=service.user_response(state.holder),
            expires_at=state.expires_at if state.holder else None,
            refreshed=refreshed,
        )

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    # ========================================================================
    # 사용자
    # ========================================================================

    @app.get("/v1/me", response_model=schemas.UserResponse)
    def get_me(
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.UserResponse:
        return schemas.UserResponse.model_validate(service.ensure_user(user_id))

    @app.patch("/v1/me", response_model=schemas.UserResponse, dependencies=mutating)
    def update_me(
        request: schemas.ProfileUpdateRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.UserResponse:
        """프로필 수정."""
        return schemas.UserResponse.model_validate(service.update_profile(request, user_id))

    @app.get("/v1/users/{target_id}/stats", response_model=schemas.UserStatsResponse)
    def user_stats(
        target_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.UserStatsResponse:
        return service.user_stats(target_id)

    # ========================================================================
    # 워크스페이스
    # ========================================================================

    @app.get("/v1/workspaces", response_model=schemas.WorkspaceListResponse)
    def list_workspaces(
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.WorkspaceListResponse:
        """워크스페이스 목록 (고정 우선, 최신순)."""
        return service.workspace_list_response(user_id)

    @app.post(
        "/v1/workspaces",
        response_model=schemas.WorkspaceResponse,
        status_code=201,
        dependencies=mutating,
    )
    def create_workspace(
        request: schemas.WorkspaceCreateRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.WorkspaceResponse:
        """워크스페이스 생성."""
        workspace = service.create_workspace(request, user_id)
        return service.workspace_snapshot(workspace.id, user_id)

    @app.get("/v1/workspaces/{workspace_id}", response_model=schemas.WorkspaceResponse)
    def get_workspace(
        workspace_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.WorkspaceResponse:
        """워크스페이스 스냅샷 조회."""
        return service.workspace_snapshot(workspace_id, user_id)

    @app.patch(
        "/v1/workspaces/{workspace_id}",
        response_model=schemas.WorkspaceResponse,
        dependencies=mutating,
    )
    def update_workspace(
        workspace_id: uuid.UUID,
        request: schemas.WorkspaceUpdateRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.WorkspaceResponse:
        """워크스페이스 수정."""
        service.update_workspace(workspace_id, request, user_id)
        return service.workspace_snapshot(workspace_id, user_id)

    @app.delete("/v1/workspaces/{workspace_id}", status_code=204, dependencies=mutating)
    def delete_workspace(
        workspace_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> None:
        """워크스페이스 삭제."""
        service.delete_workspace(workspace_id, user_id)

    @app.post(
        "/v1/workspaces/{workspace_id}/pin",
        response_model=schemas.PinResponse,
        dependencies=mutating,
    )
    def toggle_pin(
        workspace_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.PinResponse:
        pinned = service.toggle_workspace_pinned(workspace_id, user_id)
        return schemas.PinResponse(workspace_id=workspace_id, pinned=pinned)

    # ========================================================================
    # 공유
    # ========================================================================

    @app.post(
        "/v1/workspaces/{workspace_id}/invite",
        response_model=schemas.InviteResponse,
        dependencies=mutating,
    )
    def generate_invite(
        workspace_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.InviteResponse:
        """초대 토큰 발급."""
        token = service.generate_invite_token(workspace_id, user_id)
        return schemas.InviteResponse(workspace_id=workspace_id, invite_token=token)

    @app.post(
        "/v1/invites/{token}/accept",
        response_model=schemas.WorkspaceResponse,
        dependencies=mutating,
    )
    def accept_invite(
        token: str,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.WorkspaceResponse:
        """초대 수락."""
        workspace = service.accept_invite(token, user_id)
        return service.workspace_snapshot(workspace.id, user_id)

    @app.get(
        "/v1/workspaces/{workspace_id}/members",
        response_model=list[schemas.MemberResponse],
    )
    def list_members(
        workspace_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> list[schemas.MemberResponse]:
        """멤버 목록."""
        return service.member_responses(workspace_id, user_id)

    @app.delete(
        "/v1/workspaces/{workspace_id}/members/{member_user_id}",
        status_code=204,
        dependencies=mutating,
    )
    def remove_member(
        workspace_id: uuid.UUID,
        member_user_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> None:
        """멤버 제거 또는 탈퇴."""
        service.remove_workspace_member(workspace_id, member_user_id, user_id)

    # ========================================================================
    # 편집 잠금
    # ========================================================================

    @app.get("/v1/workspaces/{workspace_id}/lock", response_model=schemas.LockResponse)
    def get_lock(
        workspace_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.LockResponse:
        service.locks.refresh(workspace_id)
        return lock_response(service, service.get_workspace(workspace_id, user_id))

    @app.post(
        "/v1/workspaces/{workspace_id}/lock",
        response_model=schemas.LockResponse,
        dependencies=mutating,
    )
    def acquire_lock(
        workspace_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.LockResponse:
        """편집 잠금 획득."""
        return lock_response(service, service.acquire_workspace_lock(workspace_id, user_id))

    @app.delete(
        "/v1/workspaces/{workspace_id}/lock",
        response_model=schemas.LockResponse,
        dependencies=mutating,
    )
    def release_lock(
        workspace_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.LockResponse:
        """편집 잠금 해제."""
        return lock_response(service, service.release_workspace_lock(workspace_id, user_id))

    @app.post(
        "/v1/workspaces/{workspace_id}/lock/heartbeat",
        response_model=schemas.LockResponse,
        dependencies=mutating,
    )
    def heartbeat_lock(
        workspace_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.LockResponse:
        refreshed = service.heartbeat_workspace_lock(workspace_id, user_id)
        workspace = service.locks.refresh(workspace_id)
        return lock_response(service, workspace, refreshed=refreshed)

    @app.post(
        "/v1/workspaces/{workspace_id}/lock/transfer",
        response_model=schemas.LockResponse,
        dependencies=mutating,
    )
    def transfer_lock(
        workspace_id: uuid.UUID,
        request: schemas.LockTransferRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.LockResponse:
        """편집 잠금 이전."""
        workspace = service.transfer_workspace_lock(workspace_id, request.to_user_id, user_id)
        return lock_response(service, workspace)

    # ========================================================================
    # 컬럼
    # ========================================================================

    @app.post(
        "/v1/workspaces/{workspace_id}/columns",
        response_model=schemas.ColumnResponse,
        status_code=201,
        dependencies=mutating,
    )
    def create_column(
        workspace_id: uuid.UUID,
        request: schemas.ColumnCreateRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.ColumnResponse:
        """컬럼 생성."""
        column = service.create_column(workspace_id, request, user_id)
        return schemas.ColumnResponse.model_validate(column)

    @app.put(
        "/v1/workspaces/{workspace_id}/columns/order",
        response_model=list[schemas.ColumnResponse],
        dependencies=mutating,
    )
    def reorder_columns(
        workspace_id: uuid.UUID,
        request: schemas.ColumnReorderRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> list[schemas.ColumnResponse]:
        """컬럼 순서 일괄 변경."""
        columns = service.reorder_columns(workspace_id, request.column_ids, user_id)
        return [schemas.ColumnResponse.model_validate(c) for c in columns]

    @app.patch(
        "/v1/columns/{column_id}",
        response_model=schemas.ColumnResponse,
        dependencies=mutating,
    )
    def update_column(
        column_id: uuid.UUID,
        request: schemas.ColumnUpdateRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.ColumnResponse:
        column = service.update_column(column_id, request, user_id)
        return schemas.ColumnResponse.model_validate(column)

    @app.post(
        "/v1/columns/{column_id}/move",
        response_model=schemas.ColumnResponse,
        dependencies=mutating,
    )
    def move_column(
        column_id: uuid.UUID,
        request: schemas.ColumnMoveRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.ColumnResponse:
        column = service.move_column(column_id, request.order, user_id)
        return schemas.ColumnResponse.model_validate(column)

    @app.delete("/v1/columns/{column_id}", status_code=204, dependencies=mutating)
    def delete_column(
        column_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> None:
        """컬럼 삭제 (카드 포함)."""
        service.delete_column(column_id, user_id)

    # ========================================================================
    # 카드
    # ========================================================================

    @app.get("/v1/cards", response_model=list[schemas.CardResponse])
    def list_cards(
        filters: schemas.CardFilter = Depends(),
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> list[schemas.CardResponse]:
        """카드 목록 (허브 또는 워크스페이스)."""
        return [schemas.CardResponse.model_validate(c) for c in service.list_cards(filters, user_id)]

    @app.post(
        "/v1/cards",
        response_model=schemas.CardResponse,
        status_code=201,
        dependencies=mutating,
    )
    def create_card(
        request: schemas.CardCreateRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.CardResponse:
        """카드 생성."""
        return schemas.CardResponse.model_validate(service.create_card(request, user_id))

    @app.get("/v1/cards/{card_id}", response_model=schemas.CardResponse)
    def get_card(
        card_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.CardResponse:
        return schemas.CardResponse.model_validate(service.get_card(card_id, user_id))

    @app.patch(
        "/v1/cards/{card_id}",
        response_model=schemas.CardResponse,
        dependencies=mutating,
    )
    def update_card(
        card_id: uuid.UUID,
        request: schemas.CardUpdateRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.CardResponse:
        """카드 수정."""
        return schemas.CardResponse.model_validate(service.update_card(card_id, request, user_id))

    @app.post(
        "/v1/cards/{card_id}/move",
        response_model=schemas.CardResponse,
        dependencies=mutating,
    )
    def move_card(
        card_id: uuid.UUID,
        request: schemas.CardMoveRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.CardResponse:
        """카드 이동 (column_id=null 이면 백로그)."""
        card = service.move_card(card_id, request.column_id, request.order, user_id)
        return schemas.CardResponse.model_validate(card)

    @app.post(
        "/v1/cards/{card_id}/toggle",
        response_model=schemas.CardResponse,
        dependencies=mutating,
    )
    def toggle_card(
        card_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.CardResponse:
        return schemas.CardResponse.model_validate(service.toggle_card_done(card_id, user_id))

    @app.delete("/v1/cards/{card_id}", status_code=204, dependencies=mutating)
    def delete_card(
        card_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> None:
        service.delete_card(card_id, user_id)

    # ========================================================================
    # 도구
    # ========================================================================

    @app.get("/v1/tools", response_model=list[schemas.ToolResponse])
    def list_tools(
        workspace_id: Optional[uuid.UUID] = Query(None),
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> list[schemas.ToolResponse]:
        tools = service.list_tools(user_id, workspace_id)
        return [schemas.ToolResponse.model_validate(t) for t in tools]

    @app.post(
        "/v1/tools",
        response_model=schemas.ToolResponse,
        status_code=201,
        dependencies=mutating,
    )
    def create_tool(
        request: schemas.ToolCreateRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.ToolResponse:
        return schemas.ToolResponse.model_validate(service.create_tool(request, user_id))

    @app.patch(
        "/v1/tools/{tool_id}",
        response_model=schemas.ToolResponse,
        dependencies=mutating,
    )
    def update_tool(
        tool_id: uuid.UUID,
        request: schemas.ToolUpdateRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.ToolResponse:
        return schemas.ToolResponse.model_validate(service.update_tool(tool_id, request, user_id))

    @app.delete("/v1/tools/{tool_id}", status_code=204, dependencies=mutating)
    def delete_tool(
        tool_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> None:
        service.delete_tool(tool_id, user_id)

    # ========================================================================
    # 로드맵
    # ========================================================================

    @app.get("/v1/workspaces/{workspace_id}/roadmap", response_model=schemas.RoadmapResponse)
    def get_roadmap(
        workspace_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.RoadmapResponse:
        """로드맵 트리 조회."""
        return service.roadmap_response(service.get_roadmap(workspace_id, user_id))

    @app.post(
        "/v1/workspaces/{workspace_id}/roadmap",
        response_model=schemas.RoadmapResponse,
        status_code=201,
        dependencies=mutating,
    )
    def create_roadmap(
        workspace_id: uuid.UUID,
        request: schemas.RoadmapCreateRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.RoadmapResponse:
        return service.roadmap_response(service.create_roadmap(workspace_id, request, user_id))

    @app.delete("/v1/roadmaps/{roadmap_id}", status_code=204, dependencies=mutating)
    def delete_roadmap(
        roadmap_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> None:
        service.delete_roadmap(roadmap_id, user_id)

    @app.post(
        "/v1/roadmaps/{roadmap_id}/nodes",
        response_model=schemas.RoadmapNodeResponse,
        status_code=201,
        dependencies=mutating,
    )
    def create_roadmap_node(
        roadmap_id: uuid.UUID,
        request: schemas.RoadmapNodeCreateRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.RoadmapNodeResponse:
        node = service.create_roadmap_node(roadmap_id, request, user_id)
        return schemas.RoadmapNodeResponse.model_validate(node)

    @app.put(
        "/v1/roadmaps/{roadmap_id}/nodes/order",
        response_model=schemas.RoadmapResponse,
        dependencies=mutating,
    )
    def reorder_roadmap_nodes(
        roadmap_id: uuid.UUID,
        request: schemas.RoadmapNodeReorderRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.RoadmapResponse:
        """형제 노드 순서 일괄 변경."""
        service.reorder_roadmap_nodes(roadmap_id, request.parent_id, request.node_ids, user_id)
        return service.roadmap_response(service.get_roadmap_by_id(roadmap_id, user_id))

    @app.patch(
        "/v1/roadmap-nodes/{node_id}",
        response_model=schemas.RoadmapNodeResponse,
        dependencies=mutating,
    )
    def update_roadmap_node(
        node_id: uuid.UUID,
        request: schemas.RoadmapNodeUpdateRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.RoadmapNodeResponse:
        node = service.update_roadmap_node(node_id, request, user_id)
        return schemas.RoadmapNodeResponse.model_validate(node)

    @app.post(
        "/v1/roadmap-nodes/{node_id}/move",
        response_model=schemas.RoadmapNodeResponse,
        dependencies=mutating,
    )
    def move_roadmap_node(
        node_id: uuid.UUID,
        request: schemas.RoadmapNodeMoveRequest,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> schemas.RoadmapNodeResponse:
        node = service.move_roadmap_node(node_id, request.parent_id, request.order, user_id)
        return schemas.RoadmapNodeResponse.model_validate(node)

    @app.delete("/v1/roadmap-nodes/{node_id}", status_code=204, dependencies=mutating)
    def delete_roadmap_node(
        node_id: uuid.UUID,
        service: WorkspaceService = Depends(get_service),
        user_id: uuid.UUID = Depends(get_current_user),
    ) -> None:
        """노드 삭제 (하위 트리 포함)."""
        service.delete_roadmap_node(node_id, user_id)

    return app


def app_factory() -> FastAPI:
    """Import-string factory for ``uvicorn --reload``; settings come from the environment."""

    return create_app(WorkspaceSettings.from_env())
