"""
Repository Layer Package.

All relational access goes through repository classes. Sessions
are injected; database errors are wrapped in repository
exceptions.

Usage:

    from storage.database import session_scope
    from storage.repositories import AlertRepository

    with session_scope(factory) as session:
        repo = AlertRepository(session)
        configs = repo.list_enabled_configs()
"""

from storage.repositories.alerts import AlertRepository
from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import (
    QueryError,
    RepositoryError,
    StoreUnavailableError,
)


__all__ = [
    "AlertRepository",
    "BaseRepository",
    "RepositoryError",
    "StoreUnavailableError",
    "QueryError",
]
