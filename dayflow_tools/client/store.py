"""Optimistic local copy of one workspace plus a one-shot undo buffer.

Mutations are applied to ``WorkspaceStore.current`` before the request is
sent. When the server refuses, the pre-mutation copy is patched back in
through the reconciler so untouched entries keep their identity. The local
ordering mirrors the server's dense ordering rules but is never trusted as
the source of truth: every successful mutation is followed by a refresh.
"""

from __future__ import annotations

import copy
import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

import structlog

from .http import ApiError, WorkspaceClient
from .reconcile import align_order, patch_workspace

__all__ = ["UndoKind", "UndoAction", "UndoBuffer", "WorkspaceStore"]

logger = structlog.get_logger(__name__)

CARD_FIELDS = ("type", "title", "payload", "tags", "learning_status")

# Restore a card into the column it was deleted from.
_SAME_COLUMN = object()


class UndoKind(str, enum.Enum):
    DELETE_CARD = "delete-card"
    DELETE_COLUMN = "delete-column"
    DELETE_WORKSPACE = "delete-workspace"
    MOVE_CARD = "move-card"


@dataclass(frozen=True)
class UndoAction:
    kind: UndoKind
    payload: dict = field(default_factory=dict)


class UndoBuffer:
    """Holds the most recent reversible action; taking it empties the buffer."""

    def __init__(self) -> None:
        self._action: Optional[UndoAction] = None

    def record(self, action: UndoAction) -> None:
        self._action = action

    def peek(self) -> Optional[UndoAction]:
        return self._action

    def take(self) -> Optional[UndoAction]:
        action, self._action = self._action, None
        return action

    def clear(self) -> None:
        self._action = None

    def __bool__(self) -> bool:
        return self._action is not None


def _clamp(position: int, size: int) -> int:
    if size <= 0:
        return 0
    return max(0, min(position, size - 1))


def _renumber(cards: list, column_id: Optional[str]) -> None:
    for index, card in enumerate(cards):
        card["order"] = index
        card["column_id"] = column_id


def _card_body(card: dict) -> dict:
    return {key: copy.deepcopy(card.get(key)) for key in CARD_FIELDS if card.get(key) is not None}


class WorkspaceStore:
    """Client-side state for one workspace."""

    def __init__(self, client: WorkspaceClient, workspace_id: Any, undo: Optional[UndoBuffer] = None):
        self.client = client
        self.workspace_id = str(workspace_id)
        self.undo_buffer = undo or UndoBuffer()
        self.current: Optional[dict] = None

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def fetch(self) -> dict:
        self.current = self.client.get_workspace(self.workspace_id)
        return self.current

    def refresh(self) -> int:
        """Patch the local copy from a fresh snapshot; returns the write count."""

        remote = self.client.get_workspace(self.workspace_id)
        if self.current is None:
            self.current = remote
            return 1
        return patch_workspace(self.current, remote)

    def column(self, column_id: Any) -> dict:
        for column in self._state()["columns"]:
            if column["id"] == str(column_id):
                return column
        raise KeyError(f"Unknown column {column_id}")

    def container(self, column_id: Any) -> list:
        """Card list of *column_id*, or the backlog for ``None``."""

        if column_id is None:
            return self._state()["backlog"]
        return self.column(column_id)["cards"]

    def locate(self, card_id: Any) -> tuple[list, int]:
        card_id = str(card_id)
        state = self._state()
        for cards in [column["cards"] for column in state["columns"]] + [state["backlog"]]:
            for index, card in enumerate(cards):
                if card["id"] == card_id:
                    return cards, index
        raise KeyError(f"Unknown card {card_id}")

    def _state(self) -> dict:
        if self.current is None:
            self.fetch()
        return self.current

    # ------------------------------------------------------------------
    # optimistic mutations
    # ------------------------------------------------------------------

    def _optimistic(self, apply: Callable[[dict], None], send: Callable[[], Any]) -> Any:
        state = self._state()
        before = copy.deepcopy(state)
        apply(state)
        try:
            result = send()
        except ApiError as exc:
            patch_workspace(state, before)
            logger.info("store.rolled_back", workspace_id=self.workspace_id, code=exc.code)
            raise
        self.refresh()
        return result

    def move_card(self, card_id: Any, column_id: Any, order: int) -> dict:
        card_id = str(card_id)
        column_id = None if column_id is None else str(column_id)
        source, index = self.locate(card_id)
        origin = {"card_id": card_id, "column_id": source[index]["column_id"], "order": index}

        def apply(state: dict) -> None:
            cards, at = self.locate(card_id)
            card = cards.pop(at)
            destination = self.container(column_id)
            if destination is not cards:
                _renumber(cards, card["column_id"])
            destination.insert(_clamp(order, len(destination) + 1), card)
            _renumber(destination, column_id)

        result = self._optimistic(apply, lambda: self.client.move_card(card_id, column_id, order))
        self.undo_buffer.record(UndoAction(UndoKind.MOVE_CARD, origin))
        return result

    def delete_card(self, card_id: Any) -> None:
        card_id = str(card_id)
        cards, index = self.locate(card_id)
        removed = copy.deepcopy(cards[index])

        def apply(state: dict) -> None:
            container, at = self.locate(card_id)
            card = container.pop(at)
            _renumber(container, card["column_id"])

        self._optimistic(apply, lambda: self.client.delete_card(card_id))
        self.undo_buffer.record(UndoAction(UndoKind.DELETE_CARD, {"card": removed, "order": index}))

    def update_card(self, card_id: Any, **fields: Any) -> dict:
        card_id = str(card_id)

        def apply(state: dict) -> None:
            cards, at = self.locate(card_id)
            for key, value in fields.items():
                if key not in ("column_id", "order"):
                    cards[at][key] = value

        return self._optimistic(apply, lambda: self.client.update_card(card_id, **fields))

    def delete_column(self, column_id: Any) -> None:
        column_id = str(column_id)
        removed = copy.deepcopy(self.column(column_id))

        def apply(state: dict) -> None:
            state["columns"][:] = [c for c in state["columns"] if c["id"] != column_id]
            for index, column in enumerate(state["columns"]):
                column["order"] = index

        self._optimistic(apply, lambda: self.client.delete_column(column_id))
        self.undo_buffer.record(UndoAction(UndoKind.DELETE_COLUMN, {"column": removed}))

    def reorder_columns(self, column_ids: Sequence[Any]) -> list:
        ordered = [str(c) for c in column_ids]

        def apply(state: dict) -> None:
            listed = set(ordered)
            rest = [c["id"] for c in state["columns"] if c["id"] not in listed]
            align_order(state["columns"], ordered + rest)
            for index, column in enumerate(state["columns"]):
                column["order"] = index

        return self._optimistic(
            apply, lambda: self.client.reorder_columns(self.workspace_id, ordered)
        )

    def delete_workspace(self) -> None:
        snapshot = copy.deepcopy(self._state())
        self.client.delete_workspace(self.workspace_id)
        self.current = None
        self.undo_buffer.record(UndoAction(UndoKind.DELETE_WORKSPACE, {"workspace": snapshot}))

    # ------------------------------------------------------------------
    # undo
    # ------------------------------------------------------------------

    def undo(self) -> Optional[UndoAction]:
        """Replay the reversal of the last recorded action against the server.

        Content reversals need the caller to hold the editing lease, like any
        other edit. Returns the action that was undone, if any.
        """

        action = self.undo_buffer.take()
        if action is None:
            return None
        logger.info("store.undo", workspace_id=self.workspace_id, kind=action.kind.value)

        if action.kind is UndoKind.MOVE_CARD:
            payload = action.payload
            self.client.move_card(payload["card_id"], payload["column_id"], payload["order"])
        elif action.kind is UndoKind.DELETE_CARD:
            self._restore_card(action.payload["card"], action.payload["order"])
        elif action.kind is UndoKind.DELETE_COLUMN:
            self._restore_column(action.payload["column"])
        elif action.kind is UndoKind.DELETE_WORKSPACE:
            self._restore_workspace(action)
            return action

        self.refresh()
        return action

    def _restore_card(self, card: dict, order: int, column_id: Any = _SAME_COLUMN) -> dict:
        target = card.get("column_id") if column_id is _SAME_COLUMN else column_id
        created = self.client.create_card(
            workspace_id=self.workspace_id, column_id=target, **_card_body(card)
        )
        if card.get("done"):
            created = self.client.toggle_card(created["id"])
        return self.client.move_card(created["id"], target, order)

    def _restore_cards(self, column: dict, column_id: Any) -> None:
        for order, card in enumerate(column.get("cards", [])):
            self._restore_card(card, order, column_id=column_id)

    def _restore_column(self, column: dict) -> dict:
        created = self.client.create_column(
            self.workspace_id,
            column["title"],
            color=column.get("color"),
            hide_completed=column.get("hide_completed", False),
        )
        self.client.move_column(created["id"], column["order"])
        self._restore_cards(column, created["id"])
        return created

    def _restore_workspace(self, action: UndoAction) -> None:
        """Rebuild a deleted workspace under a new id.

        Members are not restored; they join again through a fresh invite.
        When any step fails the partial copy is deleted and *action* goes
        back into the buffer.
        """

        snapshot = action.payload["workspace"]
        try:
            created = self.client.create_workspace(
                snapshot["title"], snapshot.get("description"), snapshot.get("icon")
            )
        except ApiError:
            self.undo_buffer.record(action)
            raise
        self.workspace_id = created["id"]
        try:
            self.client.acquire_lock(self.workspace_id)
            self._replay_workspace(snapshot, [c["id"] for c in created.get("columns", [])])
            self.client.release_lock(self.workspace_id)
        except ApiError as exc:
            logger.warning(
                "store.undo_failed",
                workspace_id=self.workspace_id,
                code=exc.code,
                detail=exc.detail,
            )
            self.client.delete_workspace(self.workspace_id)
            self.workspace_id = str(snapshot["id"])
            self.undo_buffer.record(action)
            raise
        self.fetch()

    def _replay_workspace(self, snapshot: dict, placeholders: list) -> None:
        columns = sorted(snapshot.get("columns", []), key=lambda c: c["order"])
        for index, column in enumerate(columns):
            if index < len(placeholders):
                # The default column created with the workspace becomes the first one.
                self.client.update_column(
                    placeholders[index],
                    title=column["title"],
                    color=column.get("color"),
                    hide_completed=column.get("hide_completed", False),
                )
                self._restore_cards(column, placeholders[index])
            else:
                self._restore_column(column)
        for column_id in placeholders[len(columns):]:
            self.client.delete_column(column_id)
        for order, card in enumerate(snapshot.get("backlog", [])):
            self._restore_card(card, order, column_id=None)
        for tool in snapshot.get("tools", []):
            self.client.create_tool(
                tool["title"],
                workspace_id=self.workspace_id,
                link=tool.get("link"),
                description=tool.get("description"),
                icon=tool.get("icon"),
                tags=list(tool.get("tags") or []),
            )
