# backend/live_sessions/repositories/base_repository.py
"""
Base repository for the live sessions engine.

Repositories wrap every query in SQLAlchemy error handling and never commit:
the service that owns the unit of work decides when to commit or roll back.
Writes are flushed so generated ids and constraint failures surface inside
the caller's transaction.
"""

from abc import ABC, abstractmethod
import logging
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException
from ..database.session_utils import get_dialect_name, supports_row_locks

T = TypeVar("T")

logger = logging.getLogger(__name__)


class IRepository(ABC, Generic[T]):
    """Data access contract shared by every repository."""

    @abstractmethod
    def get_by_id(self, id: str, load_relationships: bool = True) -> Optional[T]:
        """Return the entity with this primary key, or None."""

    @abstractmethod
    def create(self, **kwargs: Any) -> T:
        """
        Insert and flush a new entity.

        Raises:
            RepositoryException: If the insert violates a constraint
        """

    @abstractmethod
    def delete(self, id: str) -> bool:
        """Delete by primary key; False when nothing was deleted."""


class BaseRepository(IRepository[T]):
    """
    Generic SQLAlchemy repository.

    Attributes:
        db: Session owned by the calling service
        model: Mapped class this repository reads and writes
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def dialect_name(self) -> str:
        return get_dialect_name(self.db)

    @property
    def supports_row_locks(self) -> bool:
        return supports_row_locks(self.db)

    def get_by_id(self, id: str, load_relationships: bool = True) -> Optional[T]:
        try:
            query = self.db.query(self.model).filter(self.model.id == id)
            if load_relationships:
                query = self._apply_eager_loading(query)
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error("Error loading %s %s: %s", self.model.__name__, id, e)
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}: {e}") from e

    def create(self, **kwargs: Any) -> T:
        """Add and flush; the caller's transaction decides whether it sticks."""
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()
            return entity
        except IntegrityError as exc:
            self.logger.error("Integrity error creating %s: %s", self.model.__name__, exc)
            raise RepositoryException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as e:
            self.logger.error("Error creating %s: %s", self.model.__name__, e)
            raise RepositoryException(f"Failed to create {self.model.__name__}: {e}") from e

    def flush(self) -> None:
        self.db.flush()

    def reload(self, id: str) -> Optional[T]:
        """Re-read a row, overwriting the identity-map copy after a bulk UPDATE."""
        try:
            return (
                self.db.query(self.model)
                .filter(self.model.id == id)
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error reloading %s %s: %s", self.model.__name__, id, e)
            raise RepositoryException(f"Failed to reload {self.model.__name__}: {e}") from e

    def delete(self, id: str) -> bool:
        try:
            entity = self.get_by_id(id, load_relationships=False)
            if entity is None:
                return False
            self.db.delete(entity)
            self.db.flush()
            return True
        except IntegrityError as e:
            self.logger.error("Cannot delete %s %s: %s", self.model.__name__, id, e)
            raise RepositoryException(f"Cannot delete due to existing references: {e}") from e
        except SQLAlchemyError as e:
            self.logger.error("Error deleting %s %s: %s", self.model.__name__, id, e)
            raise RepositoryException(f"Failed to delete {self.model.__name__}: {e}") from e

    def find_one_by(self, **kwargs: Any) -> Optional[T]:
        try:
            return self.db.query(self.model).filter_by(**kwargs).first()
        except SQLAlchemyError as e:
            self.logger.error("Error finding one %s: %s", self.model.__name__, e)
            raise RepositoryException(f"Failed to find record: {e}") from e

    def bulk_create(self, entities: List[Dict[str, Any]]) -> List[T]:
        """Insert many rows with one flush; returned objects carry their ids."""
        try:
            db_entities = [self.model(**data) for data in entities]
            self.db.add_all(db_entities)
            self.db.flush()
            return db_entities
        except SQLAlchemyError as e:
            self.logger.error("Error bulk creating %s: %s", self.model.__name__, e)
            raise RepositoryException(f"Failed to bulk create: {e}") from e

    # Helpers for subclasses

    def _apply_eager_loading(self, query: Query) -> Query:
        return query

    def _build_query(self) -> Query:
        return self.db.query(self.model)

    def _execute_query(self, query: Query) -> List[T]:
        try:
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error("Query execution error: %s", e)
            raise RepositoryException(f"Query failed: {e}") from e

    def _execute_scalar(self, query: Query) -> Any:
        try:
            return query.scalar()
        except SQLAlchemyError as e:
            self.logger.error("Scalar query error: %s", e)
            raise RepositoryException(f"Scalar query failed: {e}") from e
