"""In-process push channel with one bounded queue per connected user.

``ConnectionRegistry`` is the default ``IPushChannel``. A transport handler
(e.g. a websocket endpoint) calls ``connect()`` when a client attaches,
drains ``listen()`` and forwards each payload, then calls ``disconnect()``.

Delivery is at most once: a payload is enqueued exactly once and anything
still queued when the user disconnects is dropped. Persisted state remains
the source of truth, so clients catch up by polling.

Example:
    >>> registry = ConnectionRegistry()
    >>> registry.connect("u1")
    >>> registry.send("u1", payload)
    >>> async for item in registry.listen("u1"):
    ...     await websocket.send_json(item)
"""

import asyncio
from collections.abc import AsyncIterator
from typing import Any, Optional

from skillhub.config import settings
from skillhub.errors import PushDeliveryError
from skillhub.logging import logger
from skillhub.metrics import connected_push_clients
from skillhub.types import PushPayload

# Marks the end of a user's stream
_CLOSED: Any = object()


class ConnectionRegistry:
    """Registry of live per-user push queues.

    Queues belong to the event loop that listens on them. ``send()`` and
    ``disconnect()`` may be called from worker threads running the
    synchronous services; the queue operation is then handed to that loop
    with ``call_soon_threadsafe`` so a waiting ``listen()`` wakes at once.

    Args:
        queue_size: Maximum undelivered payloads per user (defaults to settings.push_queue_size)
    """

    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size if queue_size is not None else settings.push_queue_size
        if self.queue_size < 1:
            raise ValueError(f"queue_size must be at least 1, got {self.queue_size}")
        self._queues: dict[str, asyncio.Queue] = {}
        self._loops: dict[str, asyncio.AbstractEventLoop] = {}

    def connect(self, user_id: str) -> asyncio.Queue:
        """Open (or reuse) the user's queue, bound to the running loop if any."""
        queue = self._queues.get(user_id)
        if queue is None:
            queue = asyncio.Queue(maxsize=self.queue_size)
            self._queues[user_id] = queue
            connected_push_clients.set(len(self._queues))
            logger.debug(f"Push client connected: {user_id}")
        loop = _running_loop()
        if loop is not None:
            self._loops[user_id] = loop
        return queue

    def disconnect(self, user_id: str) -> None:
        """Close the user's queue; undelivered payloads are dropped."""
        queue = self._queues.pop(user_id, None)
        loop = self._loops.pop(user_id, None)
        if queue is None:
            return
        connected_push_clients.set(len(self._queues))
        logger.debug(f"Push client disconnected: {user_id}")
        self._on_owner_loop(loop, _close_queue, queue)

    def is_connected(self, user_id: str) -> bool:
        return user_id in self._queues

    @property
    def connected_users(self) -> set[str]:
        return set(self._queues)

    def send(self, user_id: str, payload: PushPayload) -> None:
        """Enqueue ``payload`` for ``user_id`` without waiting.

        Raises:
            PushDeliveryError: User is not connected, their queue is full or
                their listening loop has shut down
        """
        queue = self._queues.get(user_id)
        if queue is None:
            raise PushDeliveryError(f"User {user_id} is not connected")
        loop = self._loops.get(user_id)
        if loop is None or loop is _running_loop():
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull as exc:
                raise PushDeliveryError(f"Push queue full for user {user_id}") from exc
            return

        # Cross-thread: the size check here can race the loop, so the
        # scheduled put drops on overflow instead of raising.
        if queue.full():
            raise PushDeliveryError(f"Push queue full for user {user_id}")
        try:
            loop.call_soon_threadsafe(_put_or_drop, user_id, queue, payload)
        except RuntimeError as exc:
            raise PushDeliveryError(f"Push loop for user {user_id} is closed") from exc

    def pending(self, user_id: str) -> list[PushPayload]:
        """Drain and return everything queued for ``user_id`` without blocking."""
        queue = self._queues.get(user_id)
        items: list[PushPayload] = []
        if queue is None:
            return items
        while not queue.empty():
            items.append(queue.get_nowait())
        return items

    async def listen(self, user_id: str) -> AsyncIterator[PushPayload]:
        """Yield payloads for ``user_id`` until they disconnect."""
        queue = self.connect(user_id)
        while True:
            payload = await queue.get()
            if payload is _CLOSED:
                return
            yield payload

    @staticmethod
    def _on_owner_loop(loop: Optional[asyncio.AbstractEventLoop], callback: Any, *args: Any) -> None:
        if loop is None or loop is _running_loop():
            callback(*args)
            return
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Loop already closed; nobody is listening any more.
            callback(*args)


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _close_queue(queue: asyncio.Queue) -> None:
    while not queue.empty():
        queue.get_nowait()
    queue.put_nowait(_CLOSED)


def _put_or_drop(user_id: str, queue: asyncio.Queue, payload: PushPayload) -> None:
    try:
        queue.put_nowait(payload)
    except asyncio.QueueFull:
        logger.warning(f"Push queue full for user {user_id}, payload dropped")


__all__ = ["ConnectionRegistry"]
