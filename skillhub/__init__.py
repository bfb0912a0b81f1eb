"""SkillHub - interaction and notification core of a skill-sharing platform.

This package applies post, comment, like, community and learning-plan
mutations under compare-and-swap concurrency control, derives notifications
from them and delivers those to connected users.

Example:
    >>> from skillhub import SkillHub, LikeAction
    >>>
    >>> with SkillHub() as hub:
    ...     post = hub.interactions.create_post("hello", actor_id="u1")
    ...     hub.interactions.toggle_like(post.id, "u2", LikeAction.LIKE)
    ...     hub.notifications.list_notifications("u1")
"""

from skillhub.config import settings
from skillhub.core import SkillHub
from skillhub.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PushDeliveryError,
    SkillHubError,
    UnauthorizedError,
    ValidationError,
    VersionConflictError,
)
from skillhub.models import (
    Comment,
    Community,
    CommunityMessage,
    Identity,
    LearningPlan,
    LikeAction,
    Notification,
    NotificationType,
    PlanPatch,
    PlanTopic,
    Post,
    PostPatch,
    ProfilePatch,
    User,
)
from skillhub.push import ConnectionRegistry
from skillhub.store import AggregateStore

__version__ = "0.1.0"

__all__ = [
    # Main components
    "SkillHub",
    "AggregateStore",
    "ConnectionRegistry",
    # Configuration
    "settings",
    # Domain models
    "User",
    "Identity",
    "Post",
    "Comment",
    "Community",
    "CommunityMessage",
    "Notification",
    "NotificationType",
    "LearningPlan",
    "PlanTopic",
    "LikeAction",
    # Patches
    "PostPatch",
    "PlanPatch",
    "ProfilePatch",
    # Errors
    "SkillHubError",
    "ValidationError",
    "NotFoundError",
    "UnauthorizedError",
    "ForbiddenError",
    "ConflictError",
    "VersionConflictError",
    "PushDeliveryError",
]
