"""Interaction engine: post, comment and like mutations.

Every mutation is a read-modify-write cycle on one Post aggregate, run
under ``run_with_cas_retry`` so concurrent writers never silently
overwrite each other. Notifications are derived only after the cycle has
committed and outside the retry loop, so one accepted mutation yields at
most one notification and a failing notification never undoes it.

Example:
    >>> engine = InteractionEngine(store, dispatcher)
    >>> post = engine.create_post("hello", actor_id="u1")
    >>> engine.toggle_like(post.id, "u2", LikeAction.LIKE).likes
    {'u2'}
"""

from collections.abc import Iterable
from typing import Optional

from skillhub.errors import NotFoundError, UnauthorizedError, ValidationError
from skillhub.logging import logger
from skillhub.models import (
    Comment,
    LikeAction,
    NotificationType,
    Post,
    PostPatch,
    User,
)
from skillhub.notifications import NotificationDispatcher
from skillhub.store import AggregateStore, run_with_cas_retry
from skillhub.telemetry import traced
from skillhub.utils import is_blank, utc_now


class InteractionEngine:
    """Applies content mutations and fans out their notifications.

    Args:
        store: Aggregate store
        notifier: Dispatcher for POST_LIKE, COMMENT_LIKE and NEW_COMMENT
    """

    def __init__(self, store: AggregateStore, notifier: NotificationDispatcher):
        self.store = store
        self.notifier = notifier

    # =========================================================================
    # Reads
    # =========================================================================

    def get_post(self, post_id: str) -> Post:
        post = self.store.get_post(post_id)
        if post is None:
            raise NotFoundError("post", post_id)
        return post

    def list_posts(self) -> list[Post]:
        """All posts, newest first."""
        return self.store.find_posts()

    def posts_by_user(self, user_id: str) -> list[Post]:
        return self.store.find_posts(author_id=user_id)

    def posts_by_category(self, category: str) -> list[Post]:
        return self.store.find_posts(category=category)

    def _require_comment(self, post: Post, comment_id: str) -> Comment:
        comment = post.find_comment(comment_id)
        if comment is None:
            raise NotFoundError("comment", comment_id)
        return comment

    @staticmethod
    def _require_author(post: Post, actor_id: str) -> None:
        if post.author_id != actor_id:
            raise UnauthorizedError(f"User {actor_id} is not the author of post {post.id}")

    # =========================================================================
    # Posts
    # =========================================================================

    @traced("interactions.create_post")
    def create_post(
        self,
        content: Optional[str] = None,
        media_urls: Optional[Iterable[str]] = None,
        tags: Optional[Iterable[str]] = None,
        category: Optional[str] = None,
        *,
        actor_id: str,
    ) -> Post:
        """Create a post authored by ``actor_id``.

        The author's post index is extended in the same transaction; a
        ``User`` record is created for unknown authors.

        Raises:
            ValidationError: Neither content nor media supplied
        """
        media = list(media_urls or [])
        if is_blank(content) and not media:
            raise ValidationError("A post needs content or at least one media URL")

        post = Post(
            author_id=actor_id,
            content=None if is_blank(content) else content,
            media_urls=media,
            tags=set(tags or []),
            category=category,
        )

        def attempt() -> Post:
            author = self.store.get_user(actor_id)
            if author is None:
                author = User(id=actor_id, post_ids=[post.id])
                (stored, _), _ = self.store.apply(insert=[post, author])
            else:
                author.post_ids.append(post.id)
                (stored,), _ = self.store.apply(insert=[post], save=[author])
            return stored

        stored = run_with_cas_retry(attempt)
        logger.info(f"Post {stored.id} created by {actor_id}")
        return stored

    @traced("interactions.update_post")
    def update_post(self, post_id: str, patch: PostPatch, actor_id: str) -> Post:
        """Apply the fields present in ``patch``.

        Raises:
            NotFoundError: Post does not exist
            UnauthorizedError: Actor is not the author
            ValidationError: The patch would leave neither content nor media
        """

        def attempt() -> Post:
            post = self.get_post(post_id)
            self._require_author(post, actor_id)
            updated = patch.apply_to(post)
            if not updated.has_body:
                raise ValidationError("A post needs content or at least one media URL")
            updated.updated_at = utc_now()
            return self.store.save_post(updated)

        return run_with_cas_retry(attempt)

    @traced("interactions.delete_post")
    def delete_post(self, post_id: str, actor_id: str) -> None:
        """Delete a post with its comments and drop it from the author's index.

        Raises:
            NotFoundError: Post does not exist
            UnauthorizedError: Actor is not the author
        """

        def attempt() -> None:
            post = self.get_post(post_id)
            self._require_author(post, actor_id)
            author = self.store.get_user(post.author_id)
            if author is not None and post_id in author.post_ids:
                author.post_ids.remove(post_id)
                self.store.apply(save=[author], delete=[post])
            else:
                self.store.delete_post(post_id)

        run_with_cas_retry(attempt)
        logger.info(f"Post {post_id} deleted by {actor_id}")

    # =========================================================================
    # Likes
    # =========================================================================

    @traced("interactions.toggle_like")
    def toggle_like(self, post_id: str, user_id: str, action: LikeAction) -> Post:
        """Like or unlike a post.

        Liking twice keeps one entry and notifies once; unliking a post the
        user never liked succeeds without change.

        Raises:
            NotFoundError: Post does not exist
        """

        def attempt() -> tuple[Post, bool]:
            post = self.get_post(post_id)
            if action == LikeAction.LIKE:
                if user_id in post.likes:
                    return post, False
                post.likes.add(user_id)
            else:
                if user_id not in post.likes:
                    return post, False
                post.likes.discard(user_id)
            return self.store.save_post(post), True

        post, changed = run_with_cas_retry(attempt)
        if changed and action == LikeAction.LIKE:
            self.notifier.notify(NotificationType.POST_LIKE, user_id, post.author_id, post.id)
        return post

    # =========================================================================
    # Comments
    # =========================================================================

    @traced("interactions.add_comment")
    def add_comment(self, post_id: str, author_id: str, content: str) -> Comment:
        """Append a comment and notify the post author.

        Raises:
            ValidationError: Blank content
            NotFoundError: Post does not exist
        """
        if is_blank(content):
            raise ValidationError("Comment content cannot be empty")

        comment = Comment(author_id=author_id, content=content)

        def attempt() -> Post:
            post = self.get_post(post_id)
            post.comments.append(comment)
            return self.store.save_post(post)

        post = run_with_cas_retry(attempt)
        self.notifier.notify(
            NotificationType.NEW_COMMENT, author_id, post.author_id, post.id, content=content
        )
        return comment

    @traced("interactions.delete_comment")
    def delete_comment(self, post_id: str, comment_id: str, actor_id: str) -> Post:
        """Remove a comment; allowed for its author and the post's author.

        Raises:
            NotFoundError: Post or comment does not exist
            UnauthorizedError: Actor is neither author
        """

        def attempt() -> Post:
            post = self.get_post(post_id)
            comment = self._require_comment(post, comment_id)
            if actor_id not in (comment.author_id, post.author_id):
                raise UnauthorizedError(f"User {actor_id} cannot delete comment {comment_id}")
            post.comments = [c for c in post.comments if c.id != comment_id]
            return self.store.save_post(post)

        return run_with_cas_retry(attempt)

    @traced("interactions.toggle_comment_like")
    def toggle_comment_like(
        self,
        post_id: str,
        comment_id: str,
        user_id: str,
        action: LikeAction = LikeAction.LIKE,
    ) -> Comment:
        """Like or unlike a comment, with the same idempotency as post likes.

        Raises:
            NotFoundError: Post or comment does not exist
        """

        def attempt() -> tuple[Comment, bool]:
            post = self.get_post(post_id)
            comment = self._require_comment(post, comment_id)
            if action == LikeAction.LIKE:
                if user_id in comment.likes:
                    return comment, False
                comment.likes.add(user_id)
            else:
                if user_id not in comment.likes:
                    return comment, False
                comment.likes.discard(user_id)
            comment.updated_at = utc_now()
            saved = self.store.save_post(post)
            return self._require_comment(saved, comment_id), True

        comment, changed = run_with_cas_retry(attempt)
        if changed and action == LikeAction.LIKE:
            self.notifier.notify(NotificationType.COMMENT_LIKE, user_id, comment.author_id, comment.id)
        return comment


__all__ = ["InteractionEngine"]
