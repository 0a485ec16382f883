"""HTTP client and optimistic client-side state for workspaces."""

from .http import ApiError, WorkspaceClient
from .reconcile import patch_workspace
from .store import UndoAction, UndoBuffer, UndoKind, WorkspaceStore

__all__ = [
    "ApiError",
    "WorkspaceClient",
    "patch_workspace",
    "UndoAction",
    "UndoBuffer",
    "UndoKind",
    "WorkspaceStore",
]
