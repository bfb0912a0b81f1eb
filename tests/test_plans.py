"""Tests for learning plans and progress."""

import pytest

from skillhub.errors import NotFoundError, UnauthorizedError, ValidationError
from skillhub.models import PlanPatch, PlanTopic
from skillhub.progress import compute_progress


@pytest.fixture
def plans(hub, users):
    return hub.plans


@pytest.fixture
def plan(plans):
    topics = [PlanTopic(title=title) for title in ("Syntax", "Ownership", "Traits", "Async")]
    return plans.create_plan("Learn Rust", "u1", category="programming", topics=topics)


@pytest.mark.parametrize(
    "completed, total, expected",
    [(0, 0, 0), (0, 4, 0), (1, 4, 25), (3, 4, 75), (4, 4, 100), (1, 3, 33), (2, 3, 66)],
)
def test_compute_progress(completed, total, expected):
    assert compute_progress(completed, total) == expected


class TestLearningPlanService:
    """Tests for plan CRUD and topic completion."""

    def test_create(self, plan):
        assert plan.owner_id == "u1"
        assert plan.progress == 0
        assert len(plan.topics) == 4

    def test_create_with_completed_topics(self, plans):
        topics = [PlanTopic(title="A", completed=True), PlanTopic(title="B")]
        created = plans.create_plan("Half done", "u1", topics=topics)
        assert created.progress == 50

    def test_create_blank_title(self, plans):
        with pytest.raises(ValidationError):
            plans.create_plan(" ", "u1")

    def test_complete_topics(self, plans, plan):
        first = plans.complete_topic(plan.id, plan.topics[0].id, "u1")
        assert first.progress == 25
        assert first.topics[0].completed_at is not None

        plans.complete_topic(plan.id, plan.topics[1].id, "u1")
        third = plans.complete_topic(plan.id, plan.topics[2].id, "u1")
        assert third.progress == 75

    def test_complete_is_idempotent(self, plans, plan):
        topic_id = plan.topics[0].id
        first = plans.complete_topic(plan.id, topic_id, "u1")
        again = plans.complete_topic(plan.id, topic_id, "u1")

        assert again.progress == 25
        assert again.version == first.version
        assert again.topics[0].completed_at == first.topics[0].completed_at

    def test_complete_unknown_topic(self, plans, plan):
        with pytest.raises(NotFoundError):
            plans.complete_topic(plan.id, "missing", "u1")

    def test_add_topic_lowers_progress(self, plans, plan):
        for topic in plan.topics[:2]:
            plans.complete_topic(plan.id, topic.id, "u1")

        updated = plans.add_topic(plan.id, "Macros", "u1", resources=["https://doc.rust-lang.org"])

        assert updated.topics[-1].title == "Macros"
        assert updated.topics[-1].completed is False
        assert updated.progress == 40

    def test_add_blank_topic(self, plans, plan):
        with pytest.raises(ValidationError):
            plans.add_topic(plan.id, "", "u1")

    def test_not_owner(self, plans, plan):
        with pytest.raises(UnauthorizedError):
            plans.complete_topic(plan.id, plan.topics[0].id, "u2")
        with pytest.raises(UnauthorizedError):
            plans.get_plan(plan.id, "u2")
        with pytest.raises(UnauthorizedError):
            plans.delete_plan(plan.id, "u2")

    def test_unknown_plan(self, plans):
        with pytest.raises(NotFoundError):
            plans.get_plan("missing", "u1")

    def test_update_replaces_topics_and_recomputes(self, plans, plan):
        topics = [PlanTopic(title="Done", completed=True), PlanTopic(title="A"), PlanTopic(title="B")]

        updated = plans.update_plan(plan.id, PlanPatch(title="Rust basics", topics=topics), "u1")

        assert updated.title == "Rust basics"
        assert updated.category == "programming"
        assert [t.title for t in updated.topics] == ["Done", "A", "B"]
        assert updated.progress == 33

    def test_update_blank_title(self, plans, plan):
        with pytest.raises(ValidationError):
            plans.update_plan(plan.id, PlanPatch(title=""), "u1")

    def test_delete(self, plans, plan):
        plans.delete_plan(plan.id, "u1")
        with pytest.raises(NotFoundError):
            plans.get_plan(plan.id, "u1")

    def test_user_plans(self, plans, plan):
        other = plans.create_plan("Learn Go", "u2")

        assert [p.id for p in plans.user_plans("u1")] == [plan.id]
        assert [p.id for p in plans.user_plans("u2")] == [other.id]
