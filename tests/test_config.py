"""Unit tests for configuration management."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from skillhub.config import Environment, Settings, settings


class TestEnvironment:
    """Tests for the Environment enum."""

    def test_values(self):
        assert Environment.DEVELOPMENT == "development"
        assert Environment.PRODUCTION == "production"
        assert Environment.TESTING == "testing"
        assert Environment.STAGING == "staging"


class TestSettings:
    """Tests for Settings class."""

    def test_global_settings_use_testing_profile(self):
        """Test the suite runs against the testing profile."""
        assert settings.is_testing
        assert settings.is_in_memory
        assert settings.database_url == "sqlite://"

    def test_domain_defaults(self, monkeypatch):
        """Test notification and concurrency defaults."""
        monkeypatch.setenv("ENVIRONMENT", "development")
        config = Settings()

        assert config.preview_length == 30
        assert config.fallback_actor_name == "Someone"
        assert config.cas_max_attempts == 5
        assert config.push_queue_size == 100

    def test_database_path_defaults_under_data_dir(self, monkeypatch, tmp_path):
        """Test database_path follows data_dir when not set explicitly."""
        monkeypatch.setenv("ENVIRONMENT", "development")
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        config = Settings()

        assert config.database_path == tmp_path.resolve() / "skillhub.db"
        assert config.database_url == f"sqlite:///{tmp_path.resolve() / 'skillhub.db'}"
        assert config.log_file == tmp_path.resolve() / "skillhub.log"

    def test_explicit_database_path(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ENVIRONMENT", "development")
        monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "other.db"))
        config = Settings()

        assert config.database_path == tmp_path / "other.db"
        assert not config.is_in_memory

    def test_testing_profile(self, monkeypatch):
        """Test testing profile forces an in-memory store and quiet logs."""
        monkeypatch.setenv("ENVIRONMENT", "testing")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        config = Settings()

        assert config.database_path == Path(":memory:")
        assert config.log_level == "ERROR"
        assert config.log_to_file is False
        assert config.enable_tracing is False

    def test_production_profile(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        config = Settings()

        assert config.is_production
        assert config.log_level == "INFO"
        assert config.log_json is True
        assert config.enable_tracing is True

    def test_development_profile(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "development")
        config = Settings()

        assert config.is_development
        assert config.log_level == "DEBUG"
        assert config.enable_tracing is False

    def test_staging_profile(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "staging")
        config = Settings()

        assert config.is_staging
        assert config.log_json is True

    def test_log_level_normalized(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("LOG_LEVEL", " warning ")
        config = Settings()

        assert config.log_level == "WARNING"

    def test_invalid_log_level(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "development")
        monkeypatch.setenv("LOG_LEVEL", "LOUD")
        with pytest.raises(ValidationError):
            Settings()

    def test_preview_length_bounds(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "development")
        monkeypatch.setenv("PREVIEW_LENGTH", "0")
        with pytest.raises(ValidationError):
            Settings()

    def test_cas_attempts_from_env(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "development")
        monkeypatch.setenv("CAS_MAX_ATTEMPTS", "9")
        assert Settings().cas_max_attempts == 9
