"""Schema helpers shared by the workspace models and API."""

from .enums import CardType, LearningStatus, LockFailure, WorkspaceEnum, sa_enum

__all__ = ["CardType", "LearningStatus", "LockFailure", "WorkspaceEnum", "sa_enum"]
