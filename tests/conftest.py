"""Pytest configuration and shared fixtures for SkillHub tests."""

import os

# Select the testing profile before skillhub.config builds its settings
os.environ["ENVIRONMENT"] = "testing"

import sys
from pathlib import Path
from typing import Any, Generator

import pytest
from loguru import logger

from skillhub.core import SkillHub
from skillhub.errors import PushDeliveryError
from skillhub.metrics import reset_metrics
from skillhub.models import Identity, User
from skillhub.store import AggregateStore


# =============================================================================
# Test Configuration
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_loguru():
    """Reset loguru handlers before each test to prevent I/O errors."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="ERROR",
        format="{time} {level} {message}",
        catch=True,
        enqueue=True,
    )
    yield
    logger.remove()


@pytest.fixture(autouse=True)
def clean_metrics():
    """Start every test from zeroed Prometheus metrics."""
    reset_metrics()
    yield


# =============================================================================
# Push Channel Doubles
# =============================================================================


class RecordingPushChannel:
    """Push channel that records every payload it is handed."""

    def __init__(self, offline: set[str] | None = None):
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.offline = offline or set()

    def send(self, user_id: str, payload: dict[str, Any]) -> None:
        if user_id in self.offline:
            raise PushDeliveryError(f"User {user_id} is not connected")
        self.sent.append((user_id, payload))

    def sent_to(self, user_id: str) -> list[dict[str, Any]]:
        return [payload for recipient, payload in self.sent if recipient == user_id]


class FailingPushChannel:
    """Push channel whose transport always breaks."""

    def __init__(self):
        self.attempts = 0

    def send(self, user_id: str, payload: dict[str, Any]) -> None:
        self.attempts += 1
        raise RuntimeError("socket closed")


# =============================================================================
# Store and Core Fixtures
# =============================================================================


@pytest.fixture
def temp_db_path(tmp_path: Path) -> Path:
    return tmp_path / "skillhub.db"


@pytest.fixture
def store(temp_db_path: Path) -> Generator[AggregateStore, None, None]:
    """Aggregate store on a temporary SQLite file."""
    store = AggregateStore(temp_db_path)
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def memory_store() -> Generator[AggregateStore, None, None]:
    store = AggregateStore(":memory:")
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def push() -> RecordingPushChannel:
    return RecordingPushChannel()


@pytest.fixture
def failing_push() -> FailingPushChannel:
    return FailingPushChannel()


@pytest.fixture
def hub(store: AggregateStore, push: RecordingPushChannel) -> Generator[SkillHub, None, None]:
    """Fully wired core on the temporary store with a recording push channel."""
    hub = SkillHub(store=store, push=push)
    hub.initialize()
    yield hub
    hub.close()


@pytest.fixture
def users(hub: SkillHub) -> dict[str, User]:
    """Three registered users: u1 (Ana), u2 (Bea) and u3 (Cid)."""
    identities = [
        Identity(user_id="u1", email="ana@example.com", name="Ana"),
        Identity(user_id="u2", email="bea@example.com", name="Bea"),
        Identity(user_id="u3", email="cid@example.com", name="Cid"),
    ]
    return {identity.user_id: hub.profiles.ensure_user(identity) for identity in identities}
