"""Workspace SQLAlchemy models organized by domain."""

from .base import Base, CardType, LearningStatus
from .board import Card, Column, Tool
from .roadmaps import Roadmap, RoadmapNode
from .workspaces import User, Workspace, WorkspaceMember, WorkspacePin

__all__ = [
    "Base",
    "CardType",
    "LearningStatus",
    "User",
    "Workspace",
    "WorkspaceMember",
    "WorkspacePin",
    "Column",
    "Card",
    "Tool",
    "Roadmap",
    "RoadmapNode",
]
