"""Integration tests for the aggregate store."""

from datetime import timedelta

import pytest

from skillhub.config import settings
from skillhub.errors import VersionConflictError
from skillhub.metrics import registry
from skillhub.models import (
    Community,
    CommunityMessage,
    LearningPlan,
    Notification,
    NotificationType,
    Post,
    User,
)
from skillhub.store import AggregateStore, run_with_cas_retry
from skillhub.utils import utc_now


def make_notification(recipient_id: str, minutes_ago: int, read: bool = False) -> Notification:
    return Notification(
        recipient_id=recipient_id,
        sender_id="u2",
        type=NotificationType.POST_LIKE,
        content="Bea liked your post",
        related_entity_id="p1",
        read=read,
        created_at=utc_now() - timedelta(minutes=minutes_ago),
    )


class TestLifecycle:
    """Tests for initialize/close."""

    def test_initialize_creates_file(self, temp_db_path):
        store = AggregateStore(temp_db_path)
        store.initialize()
        try:
            assert temp_db_path.exists()
            assert not store.is_in_memory
        finally:
            store.close()

    def test_initialize_is_idempotent(self, store):
        engine = store.engine
        store.initialize()
        assert store.engine is engine

    def test_session_requires_initialize(self, temp_db_path):
        with pytest.raises(RuntimeError):
            with AggregateStore(temp_db_path).session_scope():
                pass

    def test_memory_store_shares_data(self, memory_store):
        """Test sessions on an in-memory store see each other's writes."""
        assert memory_store.is_in_memory
        memory_store.insert_user(User(id="u1", email="a@example.com"))
        assert memory_store.get_user("u1").email == "a@example.com"

    def test_session_scope_records_latency(self, store):
        store.get_user("nobody")
        count = registry.get_sample_value(
            "store_operation_duration_seconds_count", {"status": "success"}
        )
        assert count is not None and count >= 1


class TestAggregates:
    """Tests for typed get/insert/save."""

    def test_insert_and_get_post(self, store):
        post = store.insert_post(Post(author_id="u1", content="hello", likes={"u2"}))

        loaded = store.get_post(post.id)

        assert loaded.content == "hello"
        assert loaded.likes == {"u2"}
        assert loaded.version == 0

    def test_get_missing_returns_none(self, store):
        assert store.get_post("missing") is None
        assert store.get_community("missing") is None

    def test_save_increments_version(self, store):
        post = store.insert_post(Post(author_id="u1", content="hello"))
        post.likes.add("u2")

        saved = store.save_post(post)

        assert saved.version == 1
        assert store.get_post(post.id).likes == {"u2"}

    def test_stale_save_rejected(self, store):
        post = store.insert_post(Post(author_id="u1", content="hello"))
        first = store.get_post(post.id)
        second = store.get_post(post.id)

        first.likes.add("u2")
        store.save_post(first)
        second.likes.add("u3")

        with pytest.raises(VersionConflictError):
            store.save_post(second)
        assert store.get_post(post.id).likes == {"u2"}

    def test_find_user_by_email(self, store):
        store.insert_user(User(id="u1", email="ana@example.com", name="Ana"))
        assert store.find_user_by_email("ana@example.com").id == "u1"
        assert store.find_user_by_email("nobody@example.com") is None

    def test_find_posts_newest_first(self, store):
        now = utc_now()
        for n, category in enumerate(["go", "py", "py"]):
            store.insert_post(
                Post(id=f"p{n}", author_id="u1", content="x", category=category, created_at=now + timedelta(seconds=n))
            )
        store.insert_post(Post(id="other", author_id="u2", content="x", category="py"))

        assert [p.id for p in store.find_posts(author_id="u1")] == ["p2", "p1", "p0"]
        assert [p.id for p in store.find_posts(author_id="u1", category="py")] == ["p2", "p1"]

    def test_delete_plan(self, store):
        plan = store.insert_plan(LearningPlan(owner_id="u1", title="Go"))
        assert store.delete_plan(plan.id) is True
        assert store.get_plan(plan.id) is None
        assert store.delete_plan(plan.id) is False


class TestApply:
    """Tests for multi-aggregate transactions."""

    def test_apply_commits_everything(self, store):
        user = store.insert_user(User(id="u1", email="a@example.com"))
        post = Post(author_id="u1", content="hi")
        user.post_ids.append(post.id)

        inserted, saved = store.apply(insert=[post], save=[user])

        assert inserted[0].id == post.id
        assert saved[0].version == 1
        assert store.get_user("u1").post_ids == [post.id]

    def test_apply_rolls_back_on_conflict(self, store):
        """Test a conflict on one aggregate discards the whole batch."""
        user = store.insert_user(User(id="u1", email="a@example.com"))
        store.save_user(user.model_copy(update={"name": "Ana"}))
        post = Post(author_id="u1", content="hi")

        with pytest.raises(VersionConflictError):
            store.apply(insert=[post], save=[user])

        assert store.get_post(post.id) is None
        assert store.get_user("u1").name == "Ana"

    def test_apply_delete(self, store):
        post = store.insert_post(Post(author_id="u1", content="bye"))
        store.apply(delete=[post])
        assert store.get_post(post.id) is None


class TestCommunities:
    """Tests for the membership index."""

    def test_insert_community_indexes_members(self, store):
        owner = store.insert_user(User(id="u1", email="a@example.com"))
        community = Community(name="Py", owner_id="u1", members={"u1"})
        owner.owned_communities.add(community.id)

        store.insert_community(community, owner=owner)

        assert store.is_member(community.id, "u1")
        assert not store.is_member(community.id, "u2")
        assert store.get_user("u1").owned_communities == {community.id}

    def test_save_membership_updates_index(self, store):
        store.insert_user(User(id="u1", email="a@example.com"))
        joiner = store.insert_user(User(id="u2", email="b@example.com"))
        community = store.insert_community(Community(name="Py", owner_id="u1", members={"u1"}))

        community.members.add("u2")
        joiner.communities.add(community.id)
        store.save_membership(community, joiner)

        assert store.is_member(community.id, "u2")
        assert [c.id for c in store.find_communities_by_member("u2")] == [community.id]
        assert store.get_user("u2").communities == {community.id}

        community = store.get_community(community.id)
        community.members.discard("u2")
        store.save_community(community)

        assert not store.is_member(community.id, "u2")
        assert store.find_communities_by_member("u2") == []

    def test_find_communities_filters(self, store):
        store.insert_community(Community(name="Open", owner_id="u1", members={"u1"}))
        store.insert_community(Community(name="Closed", owner_id="u1", members={"u1"}, is_private=True))

        assert [c.name for c in store.find_communities(is_private=False)] == ["Open"]
        assert len(store.find_communities(owner_id="u1")) == 2


class TestMessages:
    def test_messages_ascending_and_unread_filter(self, store):
        community = store.insert_community(Community(name="Py", owner_id="u1", members={"u1", "u2"}))
        now = utc_now()
        first = store.insert_message(
            CommunityMessage(community_id=community.id, sender_id="u1", content="one", timestamp=now)
        )
        second = store.insert_message(
            CommunityMessage(
                community_id=community.id, sender_id="u2", content="two", timestamp=now + timedelta(seconds=1)
            )
        )

        assert [m.id for m in store.find_messages_by_community(community.id)] == [first.id, second.id]
        assert [m.id for m in store.find_unread_messages(community.id, exclude_sender_id="u1")] == [second.id]
        assert store.latest_message(community.id).id == second.id
        assert store.latest_message("empty") is None


class TestNotifications:
    def test_newest_first_and_unread_count(self, store):
        older = store.insert_notification(make_notification("u1", minutes_ago=5))
        newer = store.insert_notification(make_notification("u1", minutes_ago=1))
        store.insert_notification(make_notification("u1", minutes_ago=3, read=True))
        store.insert_notification(make_notification("u9", minutes_ago=1))

        listed = store.find_notifications("u1")
        unread = store.find_notifications("u1", unread_only=True)

        assert len(listed) == 3
        assert listed[0].id == newer.id
        assert [n.id for n in unread] == [newer.id, older.id]
        assert store.count_unread_notifications("u1") == 2


def test_entity_counts(store):
    store.insert_user(User(id="u1", email="a@example.com"))
    store.insert_community(Community(name="Py", owner_id="u1", members={"u1"}))

    counts = store.entity_counts()

    assert counts["userrow"] == 1
    assert counts["communityrow"] == 1
    assert counts["communitymemberlink"] == 1
    assert counts["postrow"] == 0


class TestCasRetry:
    """Tests for run_with_cas_retry."""

    def test_retries_until_success(self, monkeypatch):
        monkeypatch.setattr(settings, "cas_backoff_seconds", 0)
        calls = []

        def attempt():
            calls.append(1)
            if len(calls) < 3:
                raise VersionConflictError("post", "p1", 0)
            return "done"

        assert run_with_cas_retry(attempt) == "done"
        assert len(calls) == 3
        assert registry.get_sample_value("cas_conflicts_total", {"aggregate": "post"}) == 2.0

    def test_reraises_when_exhausted(self, monkeypatch):
        monkeypatch.setattr(settings, "cas_max_attempts", 3)
        monkeypatch.setattr(settings, "cas_backoff_seconds", 0)
        calls = []

        def attempt():
            calls.append(1)
            raise VersionConflictError("community", "c1", 4)

        with pytest.raises(VersionConflictError):
            run_with_cas_retry(attempt)
        assert len(calls) == 3

    def test_other_errors_not_retried(self):
        calls = []

        def attempt():
            calls.append(1)
            raise KeyError("boom")

        with pytest.raises(KeyError):
            run_with_cas_retry(attempt)
        assert len(calls) == 1
