"""Learning plans and their topics.

``progress`` is derived: it is recomputed after every topic mutation and
full plan update, and no operation accepts it as input.
"""

from collections.abc import Iterable
from typing import Optional

from skillhub.errors import NotFoundError, UnauthorizedError, ValidationError
from skillhub.logging import logger
from skillhub.models import LearningPlan, PlanPatch, PlanTopic
from skillhub.progress import recompute_progress
from skillhub.store import AggregateStore, run_with_cas_retry
from skillhub.telemetry import traced
from skillhub.utils import is_blank, utc_now


class LearningPlanService:
    """CRUD for learning plans plus topic add/complete."""

    def __init__(self, store: AggregateStore):
        self.store = store

    def _load_owned(self, plan_id: str, actor_id: str) -> LearningPlan:
        plan = self.store.get_plan(plan_id)
        if plan is None:
            raise NotFoundError("plan", plan_id)
        if plan.owner_id != actor_id:
            raise UnauthorizedError(f"User {actor_id} does not own plan {plan_id}")
        return plan

    def get_plan(self, plan_id: str, actor_id: str) -> LearningPlan:
        """Raises NotFoundError or UnauthorizedError."""
        return self._load_owned(plan_id, actor_id)

    def user_plans(self, user_id: str) -> list[LearningPlan]:
        return self.store.find_plans(owner_id=user_id)

    @traced("plans.create")
    def create_plan(
        self,
        title: str,
        actor_id: str,
        description: Optional[str] = None,
        category: Optional[str] = None,
        topics: Optional[Iterable[PlanTopic]] = None,
    ) -> LearningPlan:
        """Create a plan owned by ``actor_id`` with progress derived from ``topics``.

        Raises:
            ValidationError: Blank title
        """
        if is_blank(title):
            raise ValidationError("Plan title cannot be empty")

        plan = LearningPlan(
            owner_id=actor_id,
            title=title,
            description=description,
            category=category,
            topics=list(topics or []),
        )
        recompute_progress(plan)
        stored = self.store.insert_plan(plan)
        logger.info(f"Created learning plan {stored.id} for {actor_id}")
        return stored

    @traced("plans.update")
    def update_plan(self, plan_id: str, patch: PlanPatch, actor_id: str) -> LearningPlan:
        """Apply the fields present in ``patch`` and recompute progress.

        Replacement topics keep the ``completed`` flags they carry.

        Raises:
            NotFoundError: Plan does not exist
            UnauthorizedError: Actor does not own the plan
            ValidationError: ``title`` provided but blank
        """
        changes = patch.changes()
        if "title" in changes and is_blank(changes["title"]):
            raise ValidationError("Plan title cannot be empty")

        def attempt() -> LearningPlan:
            plan = patch.apply_to(self._load_owned(plan_id, actor_id))
            recompute_progress(plan)
            plan.updated_at = utc_now()
            return self.store.save_plan(plan)

        return run_with_cas_retry(attempt)

    @traced("plans.delete")
    def delete_plan(self, plan_id: str, actor_id: str) -> None:
        self._load_owned(plan_id, actor_id)
        self.store.delete_plan(plan_id)
        logger.info(f"Deleted learning plan {plan_id}")

    @traced("plans.add_topic")
    def add_topic(
        self,
        plan_id: str,
        title: str,
        actor_id: str,
        description: Optional[str] = None,
        resources: Optional[Iterable[str]] = None,
    ) -> LearningPlan:
        """Append a new, not yet completed topic.

        Raises:
            ValidationError: Blank title
            NotFoundError: Plan does not exist
            UnauthorizedError: Actor does not own the plan
        """
        if is_blank(title):
            raise ValidationError("Topic title cannot be empty")

        topic = PlanTopic(title=title, description=description, resources=list(resources or []))

        def attempt() -> LearningPlan:
            plan = self._load_owned(plan_id, actor_id)
            plan.topics.append(topic)
            recompute_progress(plan)
            plan.updated_at = utc_now()
            return self.store.save_plan(plan)

        return run_with_cas_retry(attempt)

    @traced("plans.complete_topic")
    def complete_topic(self, plan_id: str, topic_id: str, actor_id: str) -> LearningPlan:
        """Mark a topic completed; completing it again changes nothing.

        Raises:
            NotFoundError: Plan or topic does not exist
            UnauthorizedError: Actor does not own the plan
        """

        def attempt() -> LearningPlan:
            plan = self._load_owned(plan_id, actor_id)
            topic = plan.find_topic(topic_id)
            if topic is None:
                raise NotFoundError("topic", topic_id)
            if topic.completed:
                return plan
            topic.completed = True
            topic.completed_at = utc_now()
            recompute_progress(plan)
            plan.updated_at = utc_now()
            return self.store.save_plan(plan)

        return run_with_cas_retry(attempt)


__all__ = ["LearningPlanService"]
