"""Communities: membership, membership-gated chat and the last-message cache.

Membership is re-checked against the store on every read or write of a
community's messages; it is never cached between calls.

``Community.last_message_preview`` / ``last_message_time`` are a cache of
the latest accepted message. ``send_message`` refreshes them best effort
and ``reconcile_last_message`` rebuilds them from the message list after
any partial failure.
"""

from collections.abc import Iterable
from typing import Optional

from skillhub.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PushDeliveryError,
    ValidationError,
)
from skillhub.interfaces import IPushChannel
from skillhub.logging import logger
from skillhub.metrics import push_deliveries_total
from skillhub.models import Community, CommunityMessage, User
from skillhub.store import AggregateStore, run_with_cas_retry
from skillhub.telemetry import traced
from skillhub.types import MessagePayload, community_destination
from skillhub.utils import format_iso, is_blank, utc_now


def message_payload(message: CommunityMessage) -> MessagePayload:
    """Serialize a stored message for broadcast on its community destination."""
    return {
        "destination": community_destination(message.community_id),
        "message": {
            "id": message.id,
            "community_id": message.community_id,
            "sender_id": message.sender_id,
            "content": message.content,
            "timestamp": format_iso(message.timestamp),
            "read": message.read,
        },
    }


class MembershipGuard:
    """Authorizes community reads and writes against current membership."""

    def __init__(self, store: AggregateStore):
        self.store = store

    def require_community(self, community_id: str) -> Community:
        community = self.store.get_community(community_id)
        if community is None:
            raise NotFoundError("community", community_id)
        return community

    def require_member(self, community_id: str, user_id: str) -> Community:
        """Return the community if ``user_id`` is currently a member.

        Raises:
            NotFoundError: Community does not exist
            ForbiddenError: User is not a member
        """
        community = self.require_community(community_id)
        if not self.store.is_member(community_id, user_id):
            raise ForbiddenError(f"User {user_id} is not a member of community {community_id}")
        return community


class CommunityService:
    """Community lifecycle, membership and chat.

    Args:
        store: Aggregate store
        push: Live push channel used to broadcast chat messages
    """

    def __init__(self, store: AggregateStore, push: IPushChannel):
        self.store = store
        self.push = push
        self.guard = MembershipGuard(store)

    def _require_user(self, user_id: str) -> User:
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFoundError("user", user_id)
        return user

    # =========================================================================
    # Communities
    # =========================================================================

    @traced("communities.create")
    def create_community(
        self,
        name: str,
        actor_id: str,
        description: Optional[str] = None,
        is_private: bool = False,
        tags: Optional[Iterable[str]] = None,
    ) -> Community:
        """Create a community owned by ``actor_id``, who becomes its first member.

        Raises:
            ValidationError: Blank name
            NotFoundError: Owner has no user record
        """
        if is_blank(name):
            raise ValidationError("Community name cannot be empty")

        community = Community(
            name=name,
            description=description,
            owner_id=actor_id,
            is_private=is_private,
            members={actor_id},
            tags=set(tags or []),
        )

        def attempt() -> Community:
            owner = self._require_user(actor_id)
            owner.owned_communities.add(community.id)
            return self.store.insert_community(community, owner=owner)

        stored = run_with_cas_retry(attempt)
        logger.info(f"Community {stored.id} created by {actor_id}")
        return stored

    def get_community(self, community_id: str) -> Community:
        return self.guard.require_community(community_id)

    def list_public_communities(self) -> list[Community]:
        return self.store.find_communities(is_private=False)

    def user_communities(self, user_id: str) -> list[Community]:
        """Communities the user belongs to or owns, without duplicates."""
        communities = self.store.find_communities_by_member(user_id)
        seen = {community.id for community in communities}
        for community in self.store.find_communities(owner_id=user_id):
            if community.id not in seen:
                communities.append(community)
                seen.add(community.id)
        return communities

    @traced("communities.join")
    def join_community(self, community_id: str, user_id: str) -> Community:
        """Add ``user_id`` to the member set and the user's back-reference.

        Raises:
            NotFoundError: Community or user does not exist
            ConflictError: Already a member
        """

        def attempt() -> Community:
            community = self.guard.require_community(community_id)
            user = self._require_user(user_id)
            if community.has_member(user_id):
                raise ConflictError(f"User {user_id} is already a member of {community_id}")
            community.members.add(user_id)
            community.updated_at = utc_now()
            user.communities.add(community_id)
            stored, _ = self.store.save_membership(community, user)
            return stored

        return run_with_cas_retry(attempt)

    @traced("communities.leave")
    def leave_community(self, community_id: str, user_id: str) -> Community:
        """Remove ``user_id`` from the member set and the user's back-reference.

        Raises:
            NotFoundError: Community or user does not exist
            ConflictError: Not a member, or the user is the owner
        """

        def attempt() -> Community:
            community = self.guard.require_community(community_id)
            user = self._require_user(user_id)
            if not community.has_member(user_id):
                raise ConflictError(f"User {user_id} is not a member of {community_id}")
            if community.owner_id == user_id:
                raise ConflictError(f"The owner cannot leave community {community_id}")
            community.members.discard(user_id)
            community.updated_at = utc_now()
            user.communities.discard(community_id)
            stored, _ = self.store.save_membership(community, user)
            return stored

        return run_with_cas_retry(attempt)

    # =========================================================================
    # Messages
    # =========================================================================

    @traced("communities.send_message")
    def send_message(self, community_id: str, sender_id: str, content: str) -> CommunityMessage:
        """Post a chat message as ``sender_id``.

        The message is the source of truth and is stored first. The preview
        cache update and the broadcast afterwards are best effort.

        Raises:
            NotFoundError: Community does not exist
            ForbiddenError: Sender is not a member
            ValidationError: Blank content
        """
        self.guard.require_member(community_id, sender_id)
        if is_blank(content):
            raise ValidationError("Message content cannot be empty")

        message = self.store.insert_message(
            CommunityMessage(community_id=community_id, sender_id=sender_id, content=content)
        )

        community: Optional[Community] = None
        try:
            community = self._refresh_preview(community_id, message)
        except Exception as exc:
            logger.warning(
                f"Last-message cache update failed for community {community_id}: {exc}; "
                "run reconcile_last_message to repair"
            )

        self._broadcast(message, community)
        return message

    def _refresh_preview(self, community_id: str, message: CommunityMessage) -> Community:
        def attempt() -> Community:
            community = self.guard.require_community(community_id)
            # Never move the cache back to an older message
            if community.last_message_time and community.last_message_time > message.timestamp:
                return community
            community.last_message_preview = message.content
            community.last_message_time = message.timestamp
            return self.store.save_community(community)

        return run_with_cas_retry(attempt)

    def _broadcast(self, message: CommunityMessage, community: Optional[Community]) -> None:
        try:
            if community is None:
                community = self.guard.require_community(message.community_id)
            payload = message_payload(message)
            for member_id in sorted(community.members - {message.sender_id}):
                try:
                    self.push.send(member_id, payload)
                    push_deliveries_total.labels(outcome="delivered").inc()
                except PushDeliveryError:
                    push_deliveries_total.labels(outcome="offline").inc()
        except Exception as exc:
            push_deliveries_total.labels(outcome="error").inc()
            logger.warning(f"Broadcast of message {message.id} failed: {exc}")

    @traced("communities.get_messages")
    def get_messages(self, community_id: str, user_id: str) -> list[CommunityMessage]:
        """Messages in ascending timestamp order; members only."""
        self.guard.require_member(community_id, user_id)
        return self.store.find_messages_by_community(community_id)

    @traced("communities.get_unread_count")
    def get_unread_count(self, community_id: str, user_id: str) -> int:
        """Unread messages sent by others; members only."""
        self.guard.require_member(community_id, user_id)
        return len(self.store.find_unread_messages(community_id, exclude_sender_id=user_id))

    @traced("communities.mark_as_read")
    def mark_as_read(self, community_id: str, user_id: str) -> int:
        """Flag every unread message sent by others as read; members only.

        A message that can't be updated is logged and left unread; the
        rest are still flipped.

        Returns:
            Number of messages flipped to read
        """
        self.guard.require_member(community_id, user_id)
        flipped = 0
        for message in self.store.find_unread_messages(community_id, exclude_sender_id=user_id):
            try:
                changed = self._flip_message_read(message.id)
            except Exception as exc:
                logger.warning(f"Could not mark message {message.id} read: {exc}")
                continue
            flipped += int(changed)
        return flipped

    def _flip_message_read(self, message_id: str) -> bool:
        def attempt() -> bool:
            message = self.store.get_message(message_id)
            if message is None or message.read:
                return False
            message.read = True
            self.store.save_message(message)
            return True

        return run_with_cas_retry(attempt)

    # =========================================================================
    # Repair
    # =========================================================================

    @traced("communities.reconcile_last_message")
    def reconcile_last_message(self, community_id: str) -> Community:
        """Rebuild the last-message cache from the stored messages.

        Raises:
            NotFoundError: Community does not exist
        """

        def attempt() -> Community:
            community = self.guard.require_community(community_id)
            latest = self.store.latest_message(community_id)
            preview = latest.content if latest else None
            timestamp = latest.timestamp if latest else None
            if (
                community.last_message_preview == preview
                and community.last_message_time == timestamp
            ):
                return community
            community.last_message_preview = preview
            community.last_message_time = timestamp
            return self.store.save_community(community)

        return run_with_cas_retry(attempt)

    @traced("communities.reconcile_memberships")
    def reconcile_memberships(self) -> int:
        """Make owners and user back-references agree with member sets.

        Every owner is put back into its member set. Each user's
        ``communities`` is rebuilt as the communities they are a non-owner
        member of, and ``owned_communities`` as those they own.

        Returns:
            Number of community and user records repaired
        """
        repaired = 0
        for community in self.store.list_communities():
            if not community.has_member(community.owner_id):
                self._restore_owner(community.id)
                repaired += 1

        communities = self.store.list_communities()
        for user in self.store.list_users():
            joined = {c.id for c in communities if c.has_member(user.id) and c.owner_id != user.id}
            owned = {c.id for c in communities if c.owner_id == user.id}
            if user.communities != joined or user.owned_communities != owned:
                self._rewrite_back_references(user.id, communities)
                repaired += 1

        if repaired:
            logger.info(f"Reconciled {repaired} membership records")
        return repaired

    def _restore_owner(self, community_id: str) -> None:
        def attempt() -> None:
            community = self.guard.require_community(community_id)
            if not community.has_member(community.owner_id):
                community.members.add(community.owner_id)
                self.store.save_community(community)

        run_with_cas_retry(attempt)

    def _rewrite_back_references(self, user_id: str, communities: list[Community]) -> None:
        def attempt() -> None:
            user = self._require_user(user_id)
            user.communities = {
                c.id for c in communities if c.has_member(user_id) and c.owner_id != user_id
            }
            user.owned_communities = {c.id for c in communities if c.owner_id == user_id}
            self.store.save_user(user)

        run_with_cas_retry(attempt)


__all__ = ["MembershipGuard", "CommunityService", "message_payload"]
