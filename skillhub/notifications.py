"""Notification derivation and dispatch.

Deriving turns a completed mutation (kind, actor, target owner, payload)
into zero or one ``Notification``. Dispatching persists it and then tries
a live push to the recipient.

Failure policy:
    - Self-actions produce nothing at all.
    - A failed name lookup renders the fallback name instead of failing.
    - Push failures are logged and swallowed; the stored row is the source of truth.
    - ``notify()`` is best effort: nothing it raises reaches the mutation that triggered it.

Example:
    >>> dispatcher = NotificationDispatcher(store, push, NotificationDeriver(profiles))
    >>> dispatcher.notify(NotificationType.POST_LIKE, actor_id="u2", owner_id="u1", related_entity_id=post.id)
    >>> dispatcher.get_unread_count("u1")
    1
"""

from typing import Optional

from skillhub.config import settings
from skillhub.errors import ForbiddenError, NotFoundError, PushDeliveryError
from skillhub.interfaces import ILogger, INameResolver, IPushChannel
from skillhub.logging import logger
from skillhub.metrics import notifications_total, push_deliveries_total
from skillhub.models import Notification, NotificationType
from skillhub.store import AggregateStore, run_with_cas_retry
from skillhub.telemetry import traced
from skillhub.types import NOTIFICATION_DESTINATION, NotificationPayload
from skillhub.utils import format_iso, is_blank, truncate_preview

TEMPLATES: dict[NotificationType, str] = {
    NotificationType.POST_LIKE: "{name} liked your post",
    NotificationType.COMMENT_LIKE: "{name} liked your comment",
    NotificationType.NEW_COMMENT: "{name} commented: {preview}",
    NotificationType.NEW_FOLLOWER: "{name} started following you",
}


def render_content(
    kind: NotificationType,
    actor_name: str,
    content: Optional[str] = None,
    preview_length: Optional[int] = None,
) -> str:
    """Render the human-readable text stored on a notification."""
    limit = preview_length if preview_length is not None else settings.preview_length
    preview = truncate_preview(content or "", limit)
    return TEMPLATES[kind].format(name=actor_name, preview=preview)


def derive_notification(
    kind: NotificationType,
    actor_id: str,
    owner_id: str,
    related_entity_id: str,
    *,
    actor_name: str,
    content: Optional[str] = None,
    preview_length: Optional[int] = None,
) -> Optional[Notification]:
    """Decide whether a mutation warrants a notification and build it.

    Args:
        kind: Notification type implied by the mutation
        actor_id: User who performed the mutation
        owner_id: Owner of the target (post author, comment author, followed user)
        related_entity_id: Post, comment or user the notification points at
        actor_name: Actor's display name at this moment
        content: Comment text for NEW_COMMENT previews
        preview_length: Characters of ``content`` kept before the ellipsis

    Returns:
        A new unsaved Notification, or None for a self-action
    """
    if actor_id == owner_id:
        return None
    return Notification(
        recipient_id=owner_id,
        sender_id=actor_id,
        type=kind,
        content=render_content(kind, actor_name, content, preview_length),
        related_entity_id=related_entity_id,
    )


def notification_payload(notification: Notification) -> NotificationPayload:
    """Serialize a stored notification for the push channel."""
    return {
        "destination": NOTIFICATION_DESTINATION,
        "notification": {
            "id": notification.id,
            "recipient_id": notification.recipient_id,
            "sender_id": notification.sender_id,
            "type": notification.type.value,
            "content": notification.content,
            "related_entity_id": notification.related_entity_id,
            "read": notification.read,
            "created_at": format_iso(notification.created_at),
        },
    }


class NotificationDeriver:
    """Derives notifications, resolving the actor's name with one lookup.

    Args:
        names: Profile lookup for display names
        fallback_name: Name used when the lookup fails or finds nothing
        preview_length: Comment preview length (defaults to settings.preview_length)
    """

    def __init__(
        self,
        names: INameResolver,
        fallback_name: Optional[str] = None,
        preview_length: Optional[int] = None,
    ):
        self.names = names
        self.fallback_name = fallback_name if fallback_name is not None else settings.fallback_actor_name
        self.preview_length = preview_length if preview_length is not None else settings.preview_length

    def resolve_name(self, actor_id: str) -> str:
        try:
            name = self.names.display_name(actor_id)
        except Exception as exc:
            logger.warning(f"Name lookup failed for {actor_id}: {exc}")
            return self.fallback_name
        return self.fallback_name if is_blank(name) else name

    def derive(
        self,
        kind: NotificationType,
        actor_id: str,
        owner_id: str,
        related_entity_id: str,
        content: Optional[str] = None,
    ) -> Optional[Notification]:
        # Self-actions skip the name lookup entirely
        if actor_id == owner_id:
            notifications_total.labels(type=kind.value, outcome="suppressed").inc()
            return None
        return derive_notification(
            kind,
            actor_id,
            owner_id,
            related_entity_id,
            actor_name=self.resolve_name(actor_id),
            content=content,
            preview_length=self.preview_length,
        )


class NotificationDispatcher:
    """Persists notifications, pushes them live and tracks read state.

    Args:
        store: Aggregate store holding notification rows
        push: Live push channel
        deriver: Deriver used by ``notify()``
        log: Logger for side-effect failures (defaults to the package logger)
    """

    def __init__(
        self,
        store: AggregateStore,
        push: IPushChannel,
        deriver: NotificationDeriver,
        log: Optional[ILogger] = None,
    ):
        self.store = store
        self.push = push
        self.deriver = deriver
        self.log = log or logger

    def dispatch(self, notification: Notification) -> Notification:
        """Persist ``notification``, then attempt a live push.

        Raises:
            Exception: Whatever the store raises; push errors never escape
        """
        stored = self.store.insert_notification(notification)
        self._push(stored)
        return stored

    def _push(self, notification: Notification) -> None:
        try:
            self.push.send(notification.recipient_id, notification_payload(notification))
            push_deliveries_total.labels(outcome="delivered").inc()
        except PushDeliveryError as exc:
            push_deliveries_total.labels(outcome="offline").inc()
            self.log.debug(f"Push skipped for notification {notification.id}: {exc}")
        except Exception as exc:
            push_deliveries_total.labels(outcome="error").inc()
            self.log.warning(f"Push failed for notification {notification.id}: {exc}")

    def notify(
        self,
        kind: NotificationType,
        actor_id: str,
        owner_id: str,
        related_entity_id: str,
        content: Optional[str] = None,
    ) -> Optional[Notification]:
        """Derive and dispatch as a best-effort side effect.

        Returns:
            The stored notification, or None if suppressed or failed
        """
        try:
            notification = self.deriver.derive(kind, actor_id, owner_id, related_entity_id, content)
            if notification is None:
                return None
            stored = self.dispatch(notification)
        except Exception as exc:
            notifications_total.labels(type=kind.value, outcome="failed").inc()
            self.log.exception(f"Failed to create {kind.value} notification for {owner_id}: {exc}")
            return None
        notifications_total.labels(type=kind.value, outcome="created").inc()
        return stored

    @traced("notifications.list")
    def list_notifications(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        """Notifications for ``user_id``, newest first."""
        return self.store.find_notifications(user_id, unread_only=unread_only)

    def _flip_read(self, notification_id: str, user_id: Optional[str]) -> tuple[Notification, bool]:
        def attempt() -> tuple[Notification, bool]:
            notification = self.store.get_notification(notification_id)
            if notification is None:
                raise NotFoundError("notification", notification_id)
            if user_id is not None and notification.recipient_id != user_id:
                raise ForbiddenError(f"Notification {notification_id} belongs to another user")
            if notification.read:
                return notification, False
            return self.store.save_notification(notification.model_copy(update={"read": True})), True

        return run_with_cas_retry(attempt)

    @traced("notifications.mark_read")
    def mark_read(self, notification_id: str, user_id: Optional[str] = None) -> Notification:
        """Mark one notification read; a no-op if it already is.

        Args:
            notification_id: Notification to mark
            user_id: When given, must be the recipient

        Raises:
            NotFoundError: Notification does not exist
            ForbiddenError: ``user_id`` is not the recipient
        """
        notification, _ = self._flip_read(notification_id, user_id)
        return notification

    @traced("notifications.mark_all_read")
    def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notification of ``user_id`` read.

        Each notification is updated on its own; a failure is logged and
        the remaining ones are still processed.

        Returns:
            Number of notifications flipped to read
        """
        flipped = 0
        for notification in self.store.find_notifications(user_id, unread_only=True):
            try:
                _, changed = self._flip_read(notification.id, user_id)
            except Exception as exc:
                self.log.warning(f"Could not mark notification {notification.id} read: {exc}")
                continue
            flipped += int(changed)
        return flipped

    def get_unread_count(self, user_id: str) -> int:
        return self.store.count_unread_notifications(user_id)


__all__ = [
    "TEMPLATES",
    "render_content",
    "derive_notification",
    "notification_payload",
    "NotificationDeriver",
    "NotificationDispatcher",
]
