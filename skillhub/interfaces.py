"""Collaborators the core calls but does not own.

The live push channel, the profile lookup behind notification text and the
logger the dispatcher writes to. All are runtime-checkable protocols, so
any object with matching methods can be passed in.

Example:
    >>> from skillhub.interfaces import IPushChannel
    >>> class RecordingChannel:
    ...     def __init__(self):
    ...         self.sent = []
    ...     def send(self, user_id, payload):
    ...         self.sent.append((user_id, payload))
    >>> isinstance(RecordingChannel(), IPushChannel)
    True
"""

from typing import Any, Optional, Protocol, runtime_checkable

from skillhub.types import PushPayload


@runtime_checkable
class IPushChannel(Protocol):
    """Per-recipient live delivery channel.

    Fire-and-forget: no acknowledgement is surfaced to the core. The
    transport is assumed reliable and ordered per recipient.
    """

    def send(self, user_id: str, payload: PushPayload) -> None:
        """Deliver ``payload`` to ``user_id``'s live connection.

        Raises:
            PushDeliveryError: Recipient offline or channel backed up
        """
        ...


@runtime_checkable
class INameResolver(Protocol):
    """Profile lookup used when rendering notification content."""

    def display_name(self, user_id: str) -> Optional[str]:
        """Return the user's current display name, or None if unknown."""
        ...


@runtime_checkable
class ILogger(Protocol):
    """The slice of the Loguru API the notification dispatcher logs through."""

    def debug(self, message: str, *args: Any, **kwargs: Any) -> None: ...

    def warning(self, message: str, *args: Any, **kwargs: Any) -> None: ...

    def exception(self, message: str, *args: Any, **kwargs: Any) -> None:
        """Called from an except block; the active traceback is attached."""
        ...


__all__ = ["IPushChannel", "INameResolver", "ILogger"]
