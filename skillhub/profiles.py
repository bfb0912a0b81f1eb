"""User profiles and the follow graph.

``ProfileService`` is the seam to the identity provider: it turns a
verified ``Identity`` into a stored ``User``, serves display names for
notification rendering and maintains follower/following lists.
"""

from typing import TYPE_CHECKING, Optional

from sqlalchemy.exc import IntegrityError

from skillhub.errors import ConflictError, NotFoundError, ValidationError
from skillhub.logging import logger
from skillhub.models import Identity, NotificationType, ProfilePatch, User
from skillhub.store import AggregateStore, run_with_cas_retry
from skillhub.telemetry import traced
from skillhub.utils import is_blank

if TYPE_CHECKING:
    from skillhub.notifications import NotificationDispatcher


class ProfileService:
    """Profile reads and writes plus follow/unfollow.

    Args:
        store: Aggregate store
        notifier: Dispatcher used for NEW_FOLLOWER notifications; may be
            attached after construction since the dispatcher resolves names
            through this service
    """

    def __init__(self, store: AggregateStore, notifier: Optional["NotificationDispatcher"] = None):
        self.store = store
        self.notifier = notifier

    @traced("profiles.ensure_user")
    def ensure_user(self, identity: Identity) -> User:
        """Return the user behind ``identity``, creating it on first sight.

        Lookup order is by id, then by email.
        """
        user = self.store.get_user(identity.user_id)
        if user is None and identity.email:
            user = self.store.find_user_by_email(identity.email)
        if user is not None:
            return user

        new_user = User(
            id=identity.user_id,
            email=identity.email,
            name=identity.name if not is_blank(identity.name) else "New User",
        )
        try:
            stored = self.store.insert_user(new_user)
        except IntegrityError:
            # Created concurrently by another request
            existing = self.store.get_user(identity.user_id)
            if existing is None:
                raise
            return existing
        logger.info(f"Created user {stored.id}")
        return stored

    def get_profile(self, user_id: str) -> User:
        """Raises NotFoundError if the user does not exist."""
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFoundError("user", user_id)
        return user

    def display_name(self, user_id: str) -> Optional[str]:
        user = self.store.get_user(user_id)
        return user.name if user is not None else None

    @traced("profiles.update_profile")
    def update_profile(self, user_id: str, patch: ProfilePatch) -> User:
        """Apply the fields present in ``patch`` to the user's profile.

        Raises:
            NotFoundError: User does not exist
            ValidationError: ``name`` provided but blank
        """
        changes = patch.changes()
        if "name" in changes and is_blank(changes["name"]):
            raise ValidationError("Name cannot be blank")

        def attempt() -> User:
            user = self.get_profile(user_id)
            if patch.is_empty():
                return user
            return self.store.save_user(patch.apply_to(user))

        return run_with_cas_retry(attempt)

    @traced("profiles.follow")
    def follow(self, actor_id: str, target_id: str) -> User:
        """Make ``actor_id`` follow ``target_id``.

        Returns:
            The followed user with the updated follower list

        Raises:
            ValidationError: Following yourself
            NotFoundError: Either user does not exist
            ConflictError: Already following
        """
        if actor_id == target_id:
            raise ValidationError("Users cannot follow themselves")

        def attempt() -> User:
            actor = self.get_profile(actor_id)
            target = self.get_profile(target_id)
            if target_id in actor.following:
                raise ConflictError(f"User {actor_id} already follows {target_id}")
            actor.following.add(target_id)
            target.followers.add(actor_id)
            _, (_, saved_target) = self.store.apply(save=[actor, target])
            return saved_target

        target = run_with_cas_retry(attempt)
        if self.notifier is not None:
            self.notifier.notify(NotificationType.NEW_FOLLOWER, actor_id, target_id, actor_id)
        return target

    @traced("profiles.unfollow")
    def unfollow(self, actor_id: str, target_id: str) -> User:
        """Undo a follow.

        Raises:
            NotFoundError: Either user does not exist
            ConflictError: Not following
        """

        def attempt() -> User:
            actor = self.get_profile(actor_id)
            target = self.get_profile(target_id)
            if target_id not in actor.following:
                raise ConflictError(f"User {actor_id} does not follow {target_id}")
            actor.following.discard(target_id)
            target.followers.discard(actor_id)
            _, (_, saved_target) = self.store.apply(save=[actor, target])
            return saved_target

        return run_with_cas_retry(attempt)


__all__ = ["ProfileService"]
