"""Runtime configuration helpers shared by CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from dayflow_tools.env import load_env
from dayflow_tools.workspace.service import WorkspaceSettings


@dataclass(frozen=True)
class RuntimeConfig:
    """Resolved configuration for command handlers."""

    log_level: str
    settings: WorkspaceSettings


def bootstrap() -> None:
    """Load environment variables once."""

    load_env()


def build_runtime_config(
    *,
    log_level: str,
    database_url: Optional[str] = None,
    lock_timeout_seconds: Optional[float] = None,
) -> RuntimeConfig:
    """Resolve workspace settings from the environment, then apply CLI overrides."""

    settings = WorkspaceSettings.from_env()
    if database_url:
        settings.database_url = database_url
    if lock_timeout_seconds is not None:
        settings.lock_timeout_seconds = lock_timeout_seconds
    return RuntimeConfig(log_level=log_level, settings=settings)
