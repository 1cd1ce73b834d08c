"""
Base Repository Class.

============================================================
PURPOSE
============================================================
Shared plumbing for concrete repositories: the injected session,
a per-repository logger, and `_guard`, which turns SQLAlchemy
errors into repository exceptions.

Repositories flush but never commit; the transaction belongs to
the caller's `session_scope`.

============================================================
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Generic, Iterator, List, Optional, Type, TypeVar

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from storage.models.base import Base
from storage.repositories.exceptions import QueryError, StoreUnavailableError


T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """
    Base class for repositories.

    Usage:
        class AlertRepository(BaseRepository[AlertConfigModel]):
            def __init__(self, session: Session):
                super().__init__(session, AlertConfigModel, "AlertRepository")
    """

    def __init__(
        self,
        session: Session,
        model_class: Type[T],
        repository_name: str
    ) -> None:
        self._session = session
        self._model_class = model_class
        self._repository_name = repository_name
        self._logger = logging.getLogger(f"repository.{repository_name}")

    @property
    def session(self) -> Session:
        return self._session

    @contextmanager
    def _guard(self, operation: str, context: Optional[Dict[str, Any]] = None) -> Iterator[None]:
        """Re-raise SQLAlchemy errors from the block as repository errors."""
        try:
            yield
        except SQLAlchemyError as e:
            self._logger.error(f"{operation} failed: {e}", extra={"context": context or {}})
            error_cls = StoreUnavailableError if isinstance(e, OperationalError) else QueryError
            raise error_cls(self._repository_name, operation, str(e), context) from e

    def _add(self, entity: T) -> T:
        with self._guard("add", {"entity": repr(entity)}):
            self._session.add(entity)
            self._session.flush()
        return entity

    def _get_by_id(self, record_id: Any) -> Optional[T]:
        with self._guard("get", {"id": str(record_id)}):
            return self._session.get(self._model_class, record_id)

    def _delete(self, entity: T) -> None:
        with self._guard("delete", {"entity": repr(entity)}):
            self._session.delete(entity)
            self._session.flush()

    def _scalars(self, stmt: Any, operation: str = "query") -> List[Any]:
        with self._guard(operation):
            return list(self._session.execute(stmt).scalars().all())

    def _first(self, stmt: Any, operation: str = "query") -> Optional[Any]:
        with self._guard(operation):
            return self._session.execute(stmt).scalars().first()
