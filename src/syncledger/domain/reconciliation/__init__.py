"""Conflict resolution between local and remote values."""

from __future__ import annotations

from .policy import AuthorityOrder, ResolutionPolicy
from .resolver import ConflictResolver

__all__ = ["AuthorityOrder", "ConflictResolver", "ResolutionPolicy"]
