"""Wiring facade for the SkillHub interaction and notification core."""

from typing import Any, Optional

from skillhub.communities import CommunityService
from skillhub.interactions import InteractionEngine
from skillhub.interfaces import IPushChannel
from skillhub.logging import logger
from skillhub.notifications import NotificationDeriver, NotificationDispatcher
from skillhub.plans import LearningPlanService
from skillhub.profiles import ProfileService
from skillhub.push import ConnectionRegistry
from skillhub.store import AggregateStore


class SkillHub:
    """Builds every service around one aggregate store and one push channel.

    Example:
        >>> with SkillHub() as hub:
        ...     post = hub.interactions.create_post("hello", actor_id="u1")
        ...     hub.interactions.toggle_like(post.id, "u2", LikeAction.LIKE)
        ...     hub.notifications.get_unread_count("u1")
        1
    """

    def __init__(
        self,
        store: Optional[AggregateStore] = None,
        push: Optional[IPushChannel] = None,
    ):
        """Initialize the core.

        Args:
            store: Aggregate store (creates one on settings.database_path if None)
            push: Push channel (creates a ConnectionRegistry if None)
        """
        self.store = store or AggregateStore()
        self.push = push if push is not None else ConnectionRegistry()

        self.profiles = ProfileService(self.store)
        self.deriver = NotificationDeriver(self.profiles)
        self.notifications = NotificationDispatcher(self.store, self.push, self.deriver)
        self.profiles.notifier = self.notifications

        self.interactions = InteractionEngine(self.store, self.notifications)
        self.communities = CommunityService(self.store, self.push)
        self.plans = LearningPlanService(self.store)

    def initialize(self) -> None:
        self.store.initialize()
        logger.info("✅ SkillHub core initialized")

    def close(self) -> None:
        self.store.close()
        logger.info("✅ SkillHub core closed")

    def __enter__(self) -> "SkillHub":
        self.initialize()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


__all__ = ["SkillHub"]
