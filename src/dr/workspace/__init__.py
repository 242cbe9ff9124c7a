"""Durable project state."""

from dr.workspace.store import ProjectStore, WorkspaceStore

__all__ = ["ProjectStore", "WorkspaceStore"]
