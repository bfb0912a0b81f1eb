"""Type definitions for SkillHub push payloads.

This module provides TypedDict definitions for the payloads handed to the
push channel. The transport layer decides how to frame them; the core only
promises these shapes.

Example:
    >>> from skillhub.types import NotificationPayload
    >>> payload: NotificationPayload = {
    ...     "destination": "/queue/notifications",
    ...     "notification": {
    ...         "id": "n1",
    ...         "recipient_id": "u1",
    ...         "sender_id": "u2",
    ...         "type": "POST_LIKE",
    ...         "content": "Bea liked your post",
    ...         "related_entity_id": "p1",
    ...         "read": False,
    ...         "created_at": "2024-01-01T00:00:00.000000Z",
    ...     },
    ... }
"""

from typing import Literal, TypedDict

NOTIFICATION_DESTINATION = "/queue/notifications"
COMMUNITY_DESTINATION_PREFIX = "/topic/community/"


class NotificationData(TypedDict):
    """Serialized Notification as pushed to its recipient."""

    id: str
    recipient_id: str
    sender_id: str
    type: Literal["POST_LIKE", "COMMENT_LIKE", "NEW_COMMENT", "NEW_FOLLOWER"]
    content: str
    related_entity_id: str
    read: bool
    created_at: str


class MessageData(TypedDict):
    """Serialized CommunityMessage as broadcast to community members."""

    id: str
    community_id: str
    sender_id: str
    content: str
    timestamp: str
    read: bool


class NotificationPayload(TypedDict):
    destination: str
    notification: NotificationData


class MessagePayload(TypedDict):
    destination: str
    message: MessageData


PushPayload = NotificationPayload | MessagePayload


def community_destination(community_id: str) -> str:
    """Destination a community's chat messages are broadcast on."""
    return f"{COMMUNITY_DESTINATION_PREFIX}{community_id}"


__all__ = [
    "NOTIFICATION_DESTINATION",
    "COMMUNITY_DESTINATION_PREFIX",
    "NotificationData",
    "MessageData",
    "NotificationPayload",
    "MessagePayload",
    "PushPayload",
    "community_destination",
]
