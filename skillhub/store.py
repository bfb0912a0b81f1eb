"""Aggregate store for SkillHub.

This module provides SQLite persistence for every aggregate with:
- Connection management with WAL mode for file databases
- Unit-of-work sessions that commit or roll back as a whole
- Compare-and-swap saves through ``Repository.save``
- The secondary lookups the services need (by owner, member, category)
- A tenacity-driven retry loop for read-modify-write cycles

Example:
    >>> from skillhub.store import AggregateStore
    >>>
    >>> store = AggregateStore()
    >>> store.initialize()
    >>>
    >>> post = store.insert_post(Post(author_id="u1", content="hello"))
    >>> post.likes.add("u2")
    >>> post = store.save_post(post)  # raises VersionConflictError on a lost race
    >>>
    >>> store.close()
"""

import logging
import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from skillhub.config import settings
from skillhub.errors import VersionConflictError
from skillhub.logging import logger
from skillhub.metrics import cas_conflicts_total, store_operation_duration_seconds
from skillhub.models import (
    Community,
    CommunityMemberLink,
    CommunityMessage,
    CommunityMessageRow,
    CommunityRow,
    LearningPlan,
    LearningPlanRow,
    Notification,
    NotificationRow,
    Post,
    PostRow,
    User,
    UserRow,
)
from skillhub.repository import Repository

R = TypeVar("R")

# Domain aggregate type -> persisted row type
ROW_TYPES: dict[type, type[SQLModel]] = {
    User: UserRow,
    Post: PostRow,
    Community: CommunityRow,
    CommunityMessage: CommunityMessageRow,
    Notification: NotificationRow,
    LearningPlan: LearningPlanRow,
}


# =============================================================================
# Compare-and-swap retry
# =============================================================================


def run_with_cas_retry(attempt: Callable[[], R]) -> R:
    """Run one read-modify-write cycle, re-running it on version conflicts.

    ``attempt`` must re-read every aggregate it modifies. Once the configured
    attempts are exhausted the last ``VersionConflictError`` propagates.

    Args:
        attempt: Zero-argument callable performing read, modify and save

    Returns:
        Whatever the successful attempt returned
    """
    # tenacity logs retries through stdlib logging
    logging_logger = logging.getLogger(__name__)

    @retry(
        reraise=True,
        stop=stop_after_attempt(settings.cas_max_attempts),
        wait=wait_random(0, settings.cas_backoff_seconds),
        retry=retry_if_exception_type(VersionConflictError),
        before_sleep=before_sleep_log(logging_logger, logging.DEBUG),
    )
    def _runner() -> R:
        try:
            return attempt()
        except VersionConflictError as exc:
            cas_conflicts_total.labels(aggregate=exc.entity).inc()
            logger.debug(f"Version conflict on {exc.entity} {exc.entity_id}, retrying")
            raise

    return _runner()


# =============================================================================
# Aggregate Store
# =============================================================================


class AggregateStore:
    """SQLite-backed store for every SkillHub aggregate.

    Features:
    - Typed get/insert/save/delete per aggregate, returning domain models
    - Version-checked saves (stale writers get ``VersionConflictError``)
    - Membership updates written with the member index in one transaction
    - Entity counts for the CLI status table

    Args:
        database_path: Path to SQLite database file (defaults to settings.database_path);
            ``":memory:"`` keeps everything in a single shared in-memory connection

    Example:
        >>> store = AggregateStore(Path(":memory:"))
        >>> store.initialize()
        >>> store.insert_community(Community(name="Python", owner_id="u1", members={"u1"}))
        >>> store.is_member(community_id, "u1")
        True
    """

    def __init__(self, database_path: Path | str | None = None):
        self.database_path = Path(database_path) if database_path else settings.database_path
        self.engine = None

    @property
    def is_in_memory(self) -> bool:
        return str(self.database_path) == ":memory:"

    def initialize(self) -> None:
        """Initialize the engine and create tables and indexes.

        File databases get WAL journaling; in-memory databases share a
        single connection so every session sees the same data.
        """
        if self.engine is not None:
            return

        if self.is_in_memory:
            self.engine = create_engine(
                "sqlite://",
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(
                f"sqlite:///{self.database_path}",
                echo=False,
                connect_args={"check_same_thread": False},
            )

        SQLModel.metadata.create_all(self.engine)

        if not self.is_in_memory:
            with self.engine.connect() as conn:
                conn.exec_driver_sql("PRAGMA journal_mode = WAL;")
                conn.exec_driver_sql("PRAGMA synchronous = NORMAL;")
                conn.exec_driver_sql("PRAGMA temp_store = MEMORY;")
                conn.commit()

        self.create_indexes()
        logger.info(f"✅ Aggregate store initialized at {self.database_path}")

    def create_indexes(self) -> None:
        """Create composite indexes for the ordered lookups."""
        if self.engine is None:
            raise RuntimeError("Store not initialized")

        statements = [
            "CREATE INDEX IF NOT EXISTS idx_message_community_time "
            "ON communitymessagerow(community_id, timestamp)",
            "CREATE INDEX IF NOT EXISTS idx_notification_recipient_created "
            "ON notificationrow(recipient_id, created_at DESC)",
            "CREATE INDEX IF NOT EXISTS idx_notification_recipient_read "
            "ON notificationrow(recipient_id, read)",
            "CREATE INDEX IF NOT EXISTS idx_post_author_created "
            "ON postrow(author_id, created_at DESC)",
        ]
        with self.engine.connect() as conn:
            for statement in statements:
                conn.execute(text(statement))
            conn.commit()

        logger.debug("✅ Store indexes created")

    def close(self) -> None:
        """Dispose of the engine and its connections."""
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Unit of work: commit on success, roll back on any error."""
        if self.engine is None:
            raise RuntimeError("Store not initialized")

        start = time.perf_counter()
        session = Session(self.engine, expire_on_commit=False)
        status = "success"
        try:
            yield session
            session.commit()
        except Exception:
            status = "error"
            session.rollback()
            raise
        finally:
            session.close()
            store_operation_duration_seconds.labels(status=status).observe(
                time.perf_counter() - start
            )

    # =========================================================================
    # Generic helpers
    # =========================================================================

    @staticmethod
    def _row_type(aggregate: Any) -> type[SQLModel]:
        return ROW_TYPES[type(aggregate)]

    def _get(self, row_type: type[SQLModel], entity_id: str) -> Any:
        with self.session_scope() as session:
            row = Repository(session, row_type).get(entity_id)
            return row.to_domain() if row is not None else None

    def _find(self, row_type: type[SQLModel], **kwargs: Any) -> list[Any]:
        with self.session_scope() as session:
            rows = Repository(session, row_type).find_by(**kwargs)
            return [row.to_domain() for row in rows]

    def _count(self, row_type: type[SQLModel], **filters: Any) -> int:
        with self.session_scope() as session:
            return Repository(session, row_type).count_by(**filters)

    def _delete(self, row_type: type[SQLModel], entity_id: str) -> bool:
        with self.session_scope() as session:
            return Repository(session, row_type).delete(entity_id)

    def _insert_in(self, session: Session, aggregate: Any) -> Any:
        row_type = self._row_type(aggregate)
        row = Repository(session, row_type).add(row_type.from_domain(aggregate))
        return row.to_domain()

    def _save_in(self, session: Session, aggregate: Any) -> Any:
        row_type = self._row_type(aggregate)
        row = Repository(session, row_type).save(row_type.from_domain(aggregate))
        return row.to_domain()

    def insert(self, aggregate: Any) -> Any:
        """Insert any aggregate and return it as stored."""
        with self.session_scope() as session:
            return self._insert_in(session, aggregate)

    def save(self, aggregate: Any) -> Any:
        """Compare-and-swap save of any aggregate; returns it with its new version."""
        with self.session_scope() as session:
            return self._save_in(session, aggregate)

    def apply(
        self,
        insert: Iterable[Any] = (),
        save: Iterable[Any] = (),
        delete: Iterable[Any] = (),
    ) -> tuple[list[Any], list[Any]]:
        """Insert, save and delete several aggregates in one transaction.

        Either every write lands or none does. A version conflict on any
        saved aggregate rolls back the whole batch.

        Returns:
            (inserted, saved) lists of the stored aggregates, in input order
        """
        with self.session_scope() as session:
            inserted = [self._insert_in(session, aggregate) for aggregate in insert]
            saved = [self._save_in(session, aggregate) for aggregate in save]
            for aggregate in delete:
                Repository(session, self._row_type(aggregate)).delete(aggregate.id)
            return inserted, saved

    # =========================================================================
    # Users
    # =========================================================================

    def get_user(self, user_id: str) -> Optional[User]:
        return self._get(UserRow, user_id)

    def find_user_by_email(self, email: str) -> Optional[User]:
        users = self._find(UserRow, email=email, limit=1)
        return users[0] if users else None

    def insert_user(self, user: User) -> User:
        return self.insert(user)

    def save_user(self, user: User) -> User:
        return self.save(user)

    def list_users(self) -> list[User]:
        return self._find(UserRow)

    # =========================================================================
    # Posts
    # =========================================================================

    def get_post(self, post_id: str) -> Optional[Post]:
        return self._get(PostRow, post_id)

    def insert_post(self, post: Post) -> Post:
        return self.insert(post)

    def save_post(self, post: Post) -> Post:
        return self.save(post)

    def delete_post(self, post_id: str) -> bool:
        return self._delete(PostRow, post_id)

    def find_posts(
        self,
        author_id: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[Post]:
        """Posts newest first, optionally filtered by author and/or category."""
        filters: dict[str, Any] = {}
        if author_id is not None:
            filters["author_id"] = author_id
        if category is not None:
            filters["category"] = category
        return self._find(PostRow, order_by="created_at", descending=True, **filters)

    # =========================================================================
    # Communities
    # =========================================================================

    def get_community(self, community_id: str) -> Optional[Community]:
        return self._get(CommunityRow, community_id)

    def insert_community(self, community: Community, owner: Optional[User] = None) -> Community:
        """Insert a community with its member index, optionally saving the owner too."""
        with self.session_scope() as session:
            stored = self._insert_in(session, community)
            self._sync_member_links(session, stored)
            if owner is not None:
                self._save_in(session, owner)
            return stored

    def save_community(self, community: Community) -> Community:
        with self.session_scope() as session:
            stored = self._save_in(session, community)
            self._sync_member_links(session, stored)
            return stored

    def save_membership(self, community: Community, user: User) -> tuple[Community, User]:
        """Save a member-set change and the user's back-reference atomically.

        The community row, its member index and the user row commit
        together; a conflict on either rolls back both.
        """
        with self.session_scope() as session:
            stored = self._save_in(session, community)
            self._sync_member_links(session, stored)
            return stored, self._save_in(session, user)

    def _sync_member_links(self, session: Session, community: Community) -> None:
        links = Repository(session, CommunityMemberLink)
        current = {link.user_id for link in links.find_by(community_id=community.id)}
        stale = current - community.members
        if stale:
            links.delete_by(community_id=community.id, user_id__in=sorted(stale))
        for user_id in sorted(community.members - current):
            links.add(CommunityMemberLink(community_id=community.id, user_id=user_id))

    def find_communities(
        self,
        owner_id: Optional[str] = None,
        is_private: Optional[bool] = None,
    ) -> list[Community]:
        filters: dict[str, Any] = {}
        if owner_id is not None:
            filters["owner_id"] = owner_id
        if is_private is not None:
            filters["is_private"] = is_private
        return self._find(CommunityRow, order_by="created_at", **filters)

    def find_communities_by_member(self, user_id: str) -> list[Community]:
        """Communities whose member set contains ``user_id``."""
        with self.session_scope() as session:
            stmt = (
                select(CommunityRow)
                .join(CommunityMemberLink, CommunityMemberLink.community_id == CommunityRow.id)
                .where(CommunityMemberLink.user_id == user_id)
                .order_by(CommunityRow.created_at)
            )
            return [row.to_domain() for row in session.exec(stmt).all()]

    def is_member(self, community_id: str, user_id: str) -> bool:
        """True if the community exists and ``user_id`` is in its member set."""
        with self.session_scope() as session:
            return session.get(CommunityMemberLink, (community_id, user_id)) is not None

    def list_communities(self) -> list[Community]:
        return self._find(CommunityRow, order_by="created_at")

    # =========================================================================
    # Community messages
    # =========================================================================

    def get_message(self, message_id: str) -> Optional[CommunityMessage]:
        return self._get(CommunityMessageRow, message_id)

    def insert_message(self, message: CommunityMessage) -> CommunityMessage:
        return self.insert(message)

    def save_message(self, message: CommunityMessage) -> CommunityMessage:
        return self.save(message)

    def find_messages_by_community(self, community_id: str) -> list[CommunityMessage]:
        """Messages of a community in ascending timestamp order."""
        return self._find(CommunityMessageRow, order_by="timestamp", community_id=community_id)

    def find_unread_messages(
        self,
        community_id: str,
        exclude_sender_id: Optional[str] = None,
    ) -> list[CommunityMessage]:
        filters: dict[str, Any] = {"community_id": community_id, "read": False}
        if exclude_sender_id is not None:
            filters["sender_id__ne"] = exclude_sender_id
        return self._find(CommunityMessageRow, order_by="timestamp", **filters)

    def latest_message(self, community_id: str) -> Optional[CommunityMessage]:
        messages = self._find(
            CommunityMessageRow,
            order_by="timestamp",
            descending=True,
            limit=1,
            community_id=community_id,
        )
        return messages[0] if messages else None

    # =========================================================================
    # Notifications
    # =========================================================================

    def get_notification(self, notification_id: str) -> Optional[Notification]:
        return self._get(NotificationRow, notification_id)

    def insert_notification(self, notification: Notification) -> Notification:
        return self.insert(notification)

    def save_notification(self, notification: Notification) -> Notification:
        return self.save(notification)

    def find_notifications(self, recipient_id: str, unread_only: bool = False) -> list[Notification]:
        """Notifications for a recipient, newest first."""
        filters: dict[str, Any] = {"recipient_id": recipient_id}
        if unread_only:
            filters["read"] = False
        return self._find(NotificationRow, order_by="created_at", descending=True, **filters)

    def count_unread_notifications(self, recipient_id: str) -> int:
        return self._count(NotificationRow, recipient_id=recipient_id, read=False)

    # =========================================================================
    # Learning plans
    # =========================================================================

    def get_plan(self, plan_id: str) -> Optional[LearningPlan]:
        return self._get(LearningPlanRow, plan_id)

    def insert_plan(self, plan: LearningPlan) -> LearningPlan:
        return self.insert(plan)

    def save_plan(self, plan: LearningPlan) -> LearningPlan:
        return self.save(plan)

    def delete_plan(self, plan_id: str) -> bool:
        return self._delete(LearningPlanRow, plan_id)

    def find_plans(
        self,
        owner_id: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[LearningPlan]:
        filters: dict[str, Any] = {}
        if owner_id is not None:
            filters["owner_id"] = owner_id
        if category is not None:
            filters["category"] = category
        return self._find(LearningPlanRow, order_by="created_at", **filters)

    # =========================================================================
    # Status
    # =========================================================================

    def entity_counts(self) -> dict[str, int]:
        """Row counts per aggregate table."""
        counts = {}
        for row_type in (*ROW_TYPES.values(), CommunityMemberLink):
            counts[row_type.__tablename__] = self._count(row_type)
        return counts


__all__ = ["AggregateStore", "run_with_cas_retry", "ROW_TYPES"]
