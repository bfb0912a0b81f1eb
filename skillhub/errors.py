"""Error taxonomy for SkillHub.

Every error raised on purpose by the core derives from ``SkillHubError``.
The four request-level kinds (validation, not found, authorization and
conflict) are terminal for the triggering action and are never retried.
``VersionConflictError`` is the one exception: services retry it inside the
read-modify-write loop before letting it surface as a conflict.
"""

from typing import Optional


class SkillHubError(Exception):
    """Base class for all SkillHub errors."""


class ValidationError(SkillHubError):
    """Malformed or insufficient input (e.g. a post with no content and no media)."""


class NotFoundError(SkillHubError):
    """A referenced aggregate or nested entity does not exist.

    Attributes:
        entity: Entity kind (e.g. "post", "comment", "community")
        entity_id: Identifier that was looked up
    """

    def __init__(self, entity: str, entity_id: str, message: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(message or f"{entity.capitalize()} {entity_id} not found")


class UnauthorizedError(SkillHubError):
    """The actor is not the author/owner required for the mutation."""


class ForbiddenError(SkillHubError):
    """The actor lacks the membership required to read or write."""


class ConflictError(SkillHubError):
    """The requested state transition already holds."""


class VersionConflictError(ConflictError):
    """A compare-and-swap save found a different version in the store.

    Attributes:
        entity: Entity kind being saved
        entity_id: Identifier of the aggregate
        expected_version: Version the caller read before modifying
    """

    def __init__(self, entity: str, entity_id: str, expected_version: int):
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"{entity.capitalize()} {entity_id} was modified concurrently "
            f"(expected version {expected_version})"
        )


class PushDeliveryError(SkillHubError):
    """Live push to a recipient failed (offline or backed-up channel)."""


__all__ = [
    "SkillHubError",
    "ValidationError",
    "NotFoundError",
    "UnauthorizedError",
    "ForbiddenError",
    "ConflictError",
    "VersionConflictError",
    "PushDeliveryError",
]
