"""
Repository Layer Exceptions.

SQLAlchemy errors raised inside a repository are re-raised as one
of these, tagged with the repository and the operation that
failed. `session_scope` lets them through unchanged, so callers
see the repository context rather than a bare driver error.
"""

from typing import Any, Dict, Optional


class RepositoryError(Exception):
    """Base exception for repository operations."""

    def __init__(
        self,
        repository_name: str,
        operation: str,
        original_error: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.repository_name = repository_name
        self.operation = operation
        self.original_error = original_error
        self.context = context or {}
        super().__init__(f"[{repository_name}] {operation}: {original_error}")


class StoreUnavailableError(RepositoryError):
    """The database could not be reached (connection refused, locked, pool timeout)."""


class QueryError(RepositoryError):
    """A statement reached the database and failed."""
