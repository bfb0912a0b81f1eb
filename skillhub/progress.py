"""Learning plan progress calculation."""

from skillhub.models import LearningPlan


def compute_progress(completed: int, total: int) -> int:
    """Integer completion percentage, rounded down; 0 when there are no topics.

    Example:
        >>> compute_progress(3, 4)
        75
        >>> compute_progress(1, 3)
        33
        >>> compute_progress(0, 0)
        0
    """
    if total <= 0:
        return 0
    return (100 * completed) // total


def recompute_progress(plan: LearningPlan) -> int:
    """Recompute ``plan.progress`` from its topics and return it."""
    completed = sum(1 for topic in plan.topics if topic.completed)
    plan.progress = compute_progress(completed, len(plan.topics))
    return plan.progress


__all__ = ["compute_progress", "recompute_progress"]
