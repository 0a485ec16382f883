"""Collaborative workspace core: models, lease, ordering, service, API."""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    # Models
    "Base",
    "Card",
    "CardType",
    "Column",
    "LearningStatus",
    "Roadmap",
    "RoadmapNode",
    "Tool",
    "User",
    "Workspace",
    "WorkspaceMember",
    "WorkspacePin",
    # Core
    "LockManager",
    "RateLimiter",
    # API
    "create_app",
    "WorkspaceSettings",
    "WorkspaceService",
    "WorkspaceDatabase",
    "init_engine",
]

_MODELS = {
    "Base", "Card", "CardType", "Column", "LearningStatus", "Roadmap",
    "RoadmapNode", "Tool", "User", "Workspace", "WorkspaceMember", "WorkspacePin",
}


def __getattr__(name: str) -> Any:  # pragma: no cover - thin import shim
    if name in __all__:
        if name in _MODELS:
            module = import_module(".models", __name__)
        elif name == "LockManager":
            module = import_module(".locks", __name__)
        elif name == "RateLimiter":
            module = import_module(".ratelimit", __name__)
        elif name == "create_app":
            module = import_module(".api", __name__)
        else:
            module = import_module(".service", __name__)

        value = getattr(module, name)
        globals()[name] = value
        return value
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:  # pragma: no cover - introspection helper
    return sorted(__all__ + ["schema"])
