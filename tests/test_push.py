"""Tests for the in-process push channel."""

import asyncio
import threading
import time

import pytest

from skillhub.errors import PushDeliveryError
from skillhub.interfaces import IPushChannel
from skillhub.metrics import registry
from skillhub.push import ConnectionRegistry


def payload(n: int) -> dict:
    return {"destination": "/queue/notifications", "notification": {"id": f"n{n}"}}


class TestConnectionRegistry:
    """Tests for ConnectionRegistry."""

    def test_implements_push_channel(self):
        assert isinstance(ConnectionRegistry(), IPushChannel)

    def test_send_to_offline_user(self):
        with pytest.raises(PushDeliveryError):
            ConnectionRegistry().send("u1", payload(1))

    def test_send_and_drain(self):
        channels = ConnectionRegistry()
        channels.connect("u1")

        channels.send("u1", payload(1))
        channels.send("u1", payload(2))

        assert [p["notification"]["id"] for p in channels.pending("u1")] == ["n1", "n2"]
        assert channels.pending("u1") == []
        assert channels.pending("nobody") == []

    def test_full_queue(self):
        channels = ConnectionRegistry(queue_size=1)
        channels.connect("u1")
        channels.send("u1", payload(1))

        with pytest.raises(PushDeliveryError):
            channels.send("u1", payload(2))

    def test_connect_is_idempotent(self):
        channels = ConnectionRegistry()
        assert channels.connect("u1") is channels.connect("u1")
        assert channels.connected_users == {"u1"}

    def test_gauge_tracks_connections(self):
        channels = ConnectionRegistry()
        channels.connect("u1")
        channels.connect("u2")
        assert registry.get_sample_value("connected_push_clients") == 2.0

        channels.disconnect("u1")
        assert registry.get_sample_value("connected_push_clients") == 1.0
        assert not channels.is_connected("u1")

    def test_disconnect_unknown_user(self):
        ConnectionRegistry().disconnect("ghost")

    @pytest.mark.asyncio
    async def test_listen_until_disconnect(self):
        channels = ConnectionRegistry()
        received = []

        async def consume():
            async for item in channels.listen("u1"):
                received.append(item["notification"]["id"])

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)

        channels.send("u1", payload(1))
        channels.send("u1", payload(2))
        await asyncio.sleep(0.01)
        channels.disconnect("u1")
        await asyncio.wait_for(task, timeout=1)

        assert received == ["n1", "n2"]

    @pytest.mark.asyncio
    async def test_disconnect_drops_undelivered(self):
        channels = ConnectionRegistry()
        queue = channels.connect("u1")
        channels.send("u1", payload(1))

        channels.disconnect("u1")

        assert queue.qsize() == 1
        with pytest.raises(PushDeliveryError):
            channels.send("u1", payload(2))

    def test_zero_queue_size_rejected(self):
        with pytest.raises(ValueError):
            ConnectionRegistry(queue_size=0)


class TestWorkerThreadDelivery:
    """Sends from service worker threads into a listener's event loop."""

    @pytest.mark.asyncio
    async def test_send_from_thread_wakes_listener(self):
        """Test a payload sent from another thread is received promptly."""
        channels = ConnectionRegistry()
        stream = channels.listen("u1")

        async def first_item():
            return await anext(stream)

        first = asyncio.create_task(first_item())
        await asyncio.sleep(0.01)

        sender = threading.Thread(target=channels.send, args=("u1", payload(1)))
        started = time.monotonic()
        sender.start()
        item = await asyncio.wait_for(first, timeout=3)
        elapsed = time.monotonic() - started
        sender.join()

        assert item["notification"]["id"] == "n1"
        assert elapsed < 0.5

        channels.disconnect("u1")
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_full_queue_from_thread(self):
        channels = ConnectionRegistry(queue_size=1)
        channels.connect("u1")
        channels.send("u1", payload(1))
        errors = []

        def send_second():
            try:
                channels.send("u1", payload(2))
            except PushDeliveryError as exc:
                errors.append(exc)

        sender = threading.Thread(target=send_second)
        sender.start()
        sender.join()

        assert len(errors) == 1
        assert [p["notification"]["id"] for p in channels.pending("u1")] == ["n1"]

    @pytest.mark.asyncio
    async def test_disconnect_from_thread_ends_listener(self):
        channels = ConnectionRegistry()
        received = []

        async def consume():
            async for item in channels.listen("u1"):
                received.append(item["notification"]["id"])

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.01)

        def worker():
            channels.send("u1", payload(1))
            channels.disconnect("u1")

        sender = threading.Thread(target=worker)
        sender.start()
        sender.join()
        await asyncio.wait_for(task, timeout=1)

        assert not channels.is_connected("u1")
        assert received in ([], ["n1"])
