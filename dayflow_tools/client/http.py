"""Thin JSON client for the workspace API."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

import requests
import structlog

__all__ = ["ApiError", "WorkspaceClient"]

logger = structlog.get_logger(__name__)


class ApiError(RuntimeError):
    """Non-2xx answer from the workspace API."""

    def __init__(
        self,
        status_code: int,
        code: Optional[str],
        detail: str,
        reason: Optional[str] = None,
    ):
        self.status_code = status_code
        self.code = code
        self.detail = detail
        self.reason = reason
        super().__init__(f"{status_code} {code or ''}: {detail}".strip())

    @classmethod
    def from_response(cls, response: Any) -> ApiError:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            detail = body.get("detail")
            if not isinstance(detail, str):
                detail = str(detail) if detail is not None else response.text
            return cls(response.status_code, body.get("code"), detail, body.get("reason"))
        return cls(response.status_code, None, response.text)

    @property
    def is_lock_conflict(self) -> bool:
        return self.code == "LOCK_CONFLICT"

    @property
    def is_invalid_target(self) -> bool:
        return self.code == "INVALID_TARGET"

    @property
    def is_forbidden(self) -> bool:
        return self.status_code == 403


def _str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class WorkspaceClient:
    """Call the workspace API as one user.

    *http* is anything with a ``requests.Session``-style ``request`` method;
    FastAPI's ``TestClient`` works as well.
    """

    def __init__(
        self,
        base_url: str,
        user_id: Any,
        http: Any = None,
        *,
        email: Optional[str] = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_id = str(user_id)
        self.http = http or requests.Session()
        self.timeout = timeout
        self.headers = {"X-User-ID": self.user_id}
        if email:
            self.headers["X-User-Email"] = email

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        response = self.http.request(
            method,
            f"{self.base_url}{path}",
            json=json,
            params=params or None,
            headers=self.headers,
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            error = ApiError.from_response(response)
            logger.info(
                "api.request_failed",
                method=method,
                path=path,
                status=error.status_code,
                code=error.code,
            )
            raise error
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ------------------------------------------------------------------
    # profile
    # ------------------------------------------------------------------

    def me(self) -> dict:
        return self.request("GET", "/v1/me")

    def update_profile(self, **fields: Any) -> dict:
        return self.request("PATCH", "/v1/me", json=fields)

    def user_stats(self, user_id: Any = None) -> dict:
        return self.request("GET", f"/v1/users/{user_id or self.user_id}/stats")

    # ------------------------------------------------------------------
    # workspaces
    # ------------------------------------------------------------------

    def list_workspaces(self) -> dict:
        return self.request("GET", "/v1/workspaces")

    def create_workspace(self, title: str, description: Optional[str] = None, icon: Optional[str] = None) -> dict:
        return self.request(
            "POST", "/v1/workspaces", json={"title": title, "description": description, "icon": icon}
        )

    def get_workspace(self, workspace_id: Any) -> dict:
        return self.request("GET", f"/v1/workspaces/{workspace_id}")

    def update_workspace(self, workspace_id: Any, **fields: Any) -> dict:
        return self.request("PATCH", f"/v1/workspaces/{workspace_id}", json=fields)

    def delete_workspace(self, workspace_id: Any) -> None:
        self.request("DELETE", f"/v1/workspaces/{workspace_id}")

    def toggle_pin(self, workspace_id: Any) -> dict:
        return self.request("POST", f"/v1/workspaces/{workspace_id}/pin")

    def create_invite(self, workspace_id: Any) -> dict:
        return self.request("POST", f"/v1/workspaces/{workspace_id}/invite")

    def accept_invite(self, token: str) -> dict:
        return self.request("POST", f"/v1/invites/{token}/accept")

    def list_members(self, workspace_id: Any) -> list:
        return self.request("GET", f"/v1/workspaces/{workspace_id}/members")

    def remove_member(self, workspace_id: Any, member_id: Any) -> None:
        self.request("DELETE", f"/v1/workspaces/{workspace_id}/members/{member_id}")

    # ------------------------------------------------------------------
    # lease
    # ------------------------------------------------------------------

    def lock_status(self, workspace_id: Any) -> dict:
        return self.request("GET", f"/v1/workspaces/{workspace_id}/lock")

    def acquire_lock(self, workspace_id: Any) -> dict:
        return self.request("POST", f"/v1/workspaces/{workspace_id}/lock")

    def release_lock(self, workspace_id: Any) -> dict:
        return self.request("DELETE", f"/v1/workspaces/{workspace_id}/lock")

    def heartbeat(self, workspace_id: Any) -> dict:
        return self.request("POST", f"/v1/workspaces/{workspace_id}/lock/heartbeat")

    def transfer_lock(self, workspace_id: Any, to_user_id: Any) -> dict:
        return self.request(
            "POST",
            f"/v1/workspaces/{workspace_id}/lock/transfer",
            json={"to_user_id": str(to_user_id)},
        )

    # ------------------------------------------------------------------
    # columns
    # ------------------------------------------------------------------

    def create_column(self, workspace_id: Any, title: str, **fields: Any) -> dict:
        return self.request(
            "POST", f"/v1/workspaces/{workspace_id}/columns", json={"title": title, **fields}
        )

    def update_column(self, column_id: Any, **fields: Any) -> dict:
        return self.request("PATCH", f"/v1/columns/{column_id}", json=fields)

    def move_column(self, column_id: Any, order: int) -> dict:
        return self.request("POST", f"/v1/columns/{column_id}/move", json={"order": order})

    def delete_column(self, column_id: Any) -> None:
        self.request("DELETE", f"/v1/columns/{column_id}")

    def reorder_columns(self, workspace_id: Any, column_ids: Iterable[Any]) -> list:
        return self.request(
            "PUT",
            f"/v1/workspaces/{workspace_id}/columns/order",
            json={"column_ids": [str(c) for c in column_ids]},
        )

    # ------------------------------------------------------------------
    # cards
    # ------------------------------------------------------------------

    def list_cards(self, **filters: Any) -> list:
        return self.request("GET", "/v1/cards", params={k: _str(v) for k, v in filters.items()})

    def create_card(self, type: str, **fields: Any) -> dict:
        body = {"type": type}
        for key, value in fields.items():
            body[key] = _str(value) if key in ("workspace_id", "column_id") else value
        return self.request("POST", "/v1/cards", json=body)

    def get_card(self, card_id: Any) -> dict:
        return self.request("GET", f"/v1/cards/{card_id}")

    def update_card(self, card_id: Any, **fields: Any) -> dict:
        if "column_id" in fields:
            fields["column_id"] = _str(fields["column_id"])
        return self.request("PATCH", f"/v1/cards/{card_id}", json=fields)

    def move_card(self, card_id: Any, column_id: Any, order: int) -> dict:
        return self.request(
            "POST",
            f"/v1/cards/{card_id}/move",
            json={"column_id": _str(column_id), "order": order},
        )

    def toggle_card(self, card_id: Any) -> dict:
        return self.request("POST", f"/v1/cards/{card_id}/toggle")

    def delete_card(self, card_id: Any) -> None:
        self.request("DELETE", f"/v1/cards/{card_id}")

    # ------------------------------------------------------------------
    # tools
    # ------------------------------------------------------------------

    def list_tools(self, workspace_id: Any = None) -> list:
        return self.request("GET", "/v1/tools", params={"workspace_id": _str(workspace_id)})

    def create_tool(self, title: str, workspace_id: Any = None, **fields: Any) -> dict:
        return self.request(
            "POST",
            "/v1/tools",
            json={"title": title, "workspace_id": _str(workspace_id), **fields},
        )

    def update_tool(self, tool_id: Any, **fields: Any) -> dict:
        return self.request("PATCH", f"/v1/tools/{tool_id}", json=fields)

    def delete_tool(self, tool_id: Any) -> None:
        self.request("DELETE", f"/v1/tools/{tool_id}")

    # ------------------------------------------------------------------
    # roadmaps
    # ------------------------------------------------------------------

    def get_roadmap(self, workspace_id: Any) -> dict:
        return self.request("GET", f"/v1/workspaces/{workspace_id}/roadmap")

    def create_roadmap(self, workspace_id: Any, title: str, source_text: Optional[str] = None) -> dict:
        return self.request(
            "POST",
            f"/v1/workspaces/{workspace_id}/roadmap",
            json={"title": title, "source_text": source_text},
        )

    def delete_roadmap(self, roadmap_id: Any) -> None:
        self.request("DELETE", f"/v1/roadmaps/{roadmap_id}")

    def create_node(self, roadmap_id: Any, title: str, parent_id: Any = None) -> dict:
        return self.request(
            "POST",
            f"/v1/roadmaps/{roadmap_id}/nodes",
            json={"title": title, "parent_id": _str(parent_id)},
        )

    def update_node(self, node_id: Any, **fields: Any) -> dict:
        return self.request("PATCH", f"/v1/roadmap-nodes/{node_id}", json=fields)

    def move_node(self, node_id: Any, parent_id: Any, order: int) -> dict:
        return self.request(
            "POST",
            f"/v1/roadmap-nodes/{node_id}/move",
            json={"parent_id": _str(parent_id), "order": order},
        )

    def reorder_nodes(self, roadmap_id: Any, parent_id: Any, node_ids: Iterable[Any]) -> dict:
        return self.request(
            "PUT",
            f"/v1/roadmaps/{roadmap_id}/nodes/order",
            json={"parent_id": _str(parent_id), "node_ids": [str(n) for n in node_ids]},
        )

    def delete_node(self, node_id: Any) -> None:
        self.request("DELETE", f"/v1/roadmap-nodes/{node_id}")
