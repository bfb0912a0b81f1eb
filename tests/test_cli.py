"""Tests for the command-line interface."""

import pytest
from typer.testing import CliRunner

from skillhub.cli import app
from skillhub.core import SkillHub
from skillhub.models import Identity, LikeAction
from skillhub.store import AggregateStore

runner = CliRunner()


@pytest.fixture
def seeded_db(temp_db_path):
    """Database where u2 liked a post by u1."""
    with SkillHub(store=AggregateStore(temp_db_path)) as hub:
        hub.profiles.ensure_user(Identity(user_id="u1", email="ana@example.com", name="Ana"))
        hub.profiles.ensure_user(Identity(user_id="u2", email="bea@example.com", name="Bea"))
        post = hub.interactions.create_post("hello", actor_id="u1")
        hub.interactions.toggle_like(post.id, "u2", LikeAction.LIKE)
        hub.communities.create_community("Rustaceans", "u1")
    return temp_db_path


class TestCLI:
    """Tests for CLI commands."""

    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "init-db" in result.stdout

    def test_init_db(self, temp_db_path):
        result = runner.invoke(app, ["init-db", "--database", str(temp_db_path)])

        assert result.exit_code == 0
        assert "Database ready" in result.stdout
        assert temp_db_path.exists()

    def test_status(self, seeded_db):
        result = runner.invoke(app, ["status", "--database", str(seeded_db)])

        assert result.exit_code == 0
        assert "Configuration" in result.stdout
        assert "Entity Counts" in result.stdout
        assert "notificationrow" in result.stdout

    def test_unread_empty(self, temp_db_path):
        result = runner.invoke(app, ["unread", "u1", "--database", str(temp_db_path)])

        assert result.exit_code == 0
        assert result.stdout.strip() == "0"

    def test_unread_after_like(self, seeded_db):
        result = runner.invoke(app, ["unread", "u1", "--database", str(seeded_db)])
        assert result.stdout.strip() == "1"

    def test_notifications(self, seeded_db):
        result = runner.invoke(app, ["notifications", "u1", "--database", str(seeded_db)])

        assert result.exit_code == 0
        assert "POST_LIKE" in result.stdout

    def test_notifications_none(self, seeded_db):
        result = runner.invoke(app, ["notifications", "u2", "-u", "--database", str(seeded_db)])

        assert result.exit_code == 0
        assert "No notifications" in result.stdout

    def test_reconcile(self, seeded_db):
        result = runner.invoke(app, ["reconcile", "--database", str(seeded_db)])

        assert result.exit_code == 0
        assert "Previews checked" in result.stdout
        assert "Reconcile complete!" in result.stdout

    def test_metrics(self):
        result = runner.invoke(app, ["metrics"])

        assert result.exit_code == 0
        assert "connected_push_clients" in result.stdout
