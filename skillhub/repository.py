"""Generic repository pattern with compare-and-swap saves.

This module provides a Generic Repository[T] for the SQLModel rows behind
each aggregate. Every aggregate row carries an ``id`` primary key and an
integer ``version``; ``save()`` only succeeds if the stored version still
equals the version the caller read, and bumps it by one.

Repositories never commit. They flush into the session they were built
on, and the surrounding unit of work (``AggregateStore.session_scope``)
decides whether the whole batch commits or rolls back.

Example:
    >>> from skillhub.repository import Repository
    >>> from skillhub.models import PostRow
    >>>
    >>> with store.session_scope() as session:
    ...     posts = Repository[PostRow](session, PostRow)
    ...     row = posts.get("post-123")
    ...     row.content = "edited"
    ...     posts.save(row)  # raises VersionConflictError if someone else saved first
"""

from collections.abc import Sequence
from typing import Any, Generic, Optional, TypeVar

from sqlalchemy import func, update
from sqlmodel import Session, SQLModel, select

from skillhub.errors import NotFoundError, VersionConflictError

# =============================================================================
# Type Variables
# =============================================================================

T = TypeVar("T", bound=SQLModel)


# =============================================================================
# Generic Repository
# =============================================================================


class Repository(Generic[T]):
    """Generic repository implementation for versioned SQLModel rows.

    Type Parameter:
        T: SQLModel row type (PostRow, CommunityRow, NotificationRow, ...)

    Args:
        session: SQLModel Session instance
        model: SQLModel class (e.g., PostRow, CommunityRow)

    Example:
        >>> repo = Repository[NotificationRow](session, NotificationRow)
        >>> unread = repo.find_by(recipient_id="u1", read=False, order_by="created_at", descending=True)
        >>> repo.count_by(recipient_id="u1", read=False)
        3
        >>> repo.find_by(community_id="c1", sender_id__ne="u1")
    """

    def __init__(self, session: Session, model: type[T]):
        self.session = session
        self.model = model

    @property
    def entity_name(self) -> str:
        """Human-readable entity kind derived from the row class name."""
        return self.model.__name__.removesuffix("Row").lower()

    def get(self, entity_id: str) -> T | None:
        """Get entity by ID.

        Args:
            entity_id: Primary key value

        Returns:
            Entity instance or None if not found
        """
        return self.session.get(self.model, entity_id)

    def _apply_filters(self, stmt: Any, filters: dict[str, Any]) -> Any:
        for key, value in filters.items():
            name, _, op = key.partition("__")
            column = getattr(self.model, name)
            if op == "ne":
                stmt = stmt.where(column != value)
            elif op == "in":
                stmt = stmt.where(column.in_(value))
            elif op:
                raise ValueError(f"Unsupported filter operator: {op}")
            else:
                stmt = stmt.where(column == value)
        return stmt

    def find_by(
        self,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        **filters: Any,
    ) -> Sequence[T]:
        """Find entities matching filters.

        Filters are ``attribute=value`` equality checks; a ``__ne`` suffix
        negates the check and ``__in`` matches any of a collection.

        Args:
            order_by: Attribute name to sort by
            descending: Sort descending instead of ascending
            limit: Maximum number of results
            **filters: Keyword arguments for filtering

        Returns:
            Sequence of matching entities
        """
        stmt = self._apply_filters(select(self.model), filters)
        if order_by is not None:
            column = getattr(self.model, order_by)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.exec(stmt).all()

    def count_by(self, **filters: Any) -> int:
        """Count entities matching filters (same syntax as ``find_by``)."""
        stmt = self._apply_filters(select(func.count()).select_from(self.model), filters)
        return self.session.exec(stmt).one()

    def exists(self, entity_id: str) -> bool:
        """Check if entity exists by ID."""
        return self.get(entity_id) is not None

    def add(self, entity: T) -> T:
        """Insert a new entity.

        Args:
            entity: Entity instance to insert

        Returns:
            The same entity, flushed to the session
        """
        self.session.add(entity)
        self.session.flush()
        return entity

    def save(self, entity: T) -> T:
        """Compare-and-swap update of an existing entity.

        The update only applies if the stored version equals
        ``entity.version``. On success the stored version and
        ``entity.version`` are both incremented.

        Args:
            entity: Entity carrying the version it was read at

        Returns:
            The entity with its new version

        Raises:
            VersionConflictError: Stored version differs (concurrent writer won)
            NotFoundError: Entity no longer exists
        """
        expected = entity.version  # type: ignore[attr-defined]
        entity_id = entity.id  # type: ignore[attr-defined]

        values = entity.model_dump(exclude={"id", "version"})
        values["version"] = expected + 1

        stmt = (
            update(self.model)
            .where(self.model.id == entity_id)  # type: ignore[attr-defined]
            .where(self.model.version == expected)  # type: ignore[attr-defined]
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)

        if result.rowcount == 0:
            if self.exists(entity_id):
                raise VersionConflictError(self.entity_name, entity_id, expected)
            raise NotFoundError(self.entity_name, entity_id)

        entity.version = expected + 1  # type: ignore[attr-defined]
        return entity

    def delete(self, entity_id: str) -> bool:
        """Delete entity by ID.

        Returns:
            True if deleted, False if not found
        """
        entity = self.get(entity_id)
        if entity is None:
            return False
        self.session.delete(entity)
        self.session.flush()
        return True

    def delete_by(self, **filters: Any) -> int:
        """Delete all entities matching filters.

        Returns:
            Number of entities deleted
        """
        rows = self.find_by(**filters)
        for row in rows:
            self.session.delete(row)
        self.session.flush()
        return len(rows)


__all__ = ["Repository"]
