"""Tests for Settings loaded from the environment."""

from pathlib import Path

import pytest

from productsync.config.settings import RemoteCredentials, Settings

ENV_VARS = [
    "DATABASE_URL", "REMOTE_DB_HOST", "REMOTE_DB_PORT", "REMOTE_DB_USER",
    "REMOTE_DB_PASSWORD", "REMOTE_DB_NAME", "REMOTE_DB_SSL", "LOCAL_DB_PATH",
    "DATA_DIR", "SYNC_BATCH_SIZE", "SYNC_TOMBSTONE_BATCH_SIZE",
    "SYNC_ACK_BATCH_SIZE", "SYNC_SAFETY_WINDOW_SECONDS",
    "AUTO_SYNC_INTERVAL_SECONDS", "HEALTH_CHECK_INTERVAL_SECONDS",
    "RECONNECT_MAX_ATTEMPTS", "RECONNECT_BASE_DELAY_SECONDS", "PROBE_URL",
    "PROBE_TIMEOUT_SECONDS", "SQL_ECHO", "LOG_LEVEL", "API_HOST", "API_PORT",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Nenhum .env de verdade entra no teste
    env_file = tmp_path / ".env"
    env_file.write_text("", encoding="utf-8")
    return str(env_file)


class TestSettings:
    """Test defaults and overrides."""

    def test_defaults(self, clean_env):
        settings = Settings.from_env(clean_env)

        assert settings.batch_size == 1000
        assert settings.tombstone_batch_size == 100
        assert settings.ack_batch_size == 500
        assert settings.safety_window_seconds == 60
        assert settings.auto_sync_interval == 60
        assert settings.health_check_interval == 10
        assert settings.reconnect_max_attempts == 5
        assert settings.reconnect_base_delay == 5
        assert settings.local_database_file == Path(".") / "product-database.db"

    def test_env_overrides(self, clean_env, monkeypatch, tmp_path):
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://u:p@db:5432/products")
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        monkeypatch.setenv("SYNC_BATCH_SIZE", "250")
        monkeypatch.setenv("RECONNECT_MAX_ATTEMPTS", "8")
        monkeypatch.setenv("SQL_ECHO", "true")

        settings = Settings.from_env(clean_env)

        assert settings.remote_url() == "postgresql+asyncpg://u:p@db:5432/products"
        assert settings.batch_size == 250
        assert settings.reconnect_max_attempts == 8
        assert settings.sql_echo is True
        assert settings.node_identity_file == tmp_path / "node-identity.json"

    def test_discrete_credentials(self, clean_env, monkeypatch):
        monkeypatch.setenv("REMOTE_DB_HOST", "rds.example.com")
        monkeypatch.setenv("REMOTE_DB_USER", "sync")
        monkeypatch.setenv("REMOTE_DB_PASSWORD", "secret")
        monkeypatch.setenv("REMOTE_DB_NAME", "products")
        monkeypatch.setenv("REMOTE_DB_SSL", "1")

        settings = Settings.from_env(clean_env)

        url = settings.remote_url()
        assert url.drivername == "postgresql+asyncpg"
        assert url.host == "rds.example.com"
        assert url.port == 5432
        assert url.database == "products"
        assert settings.remote_credentials.ssl is True

    def test_missing_remote_raises(self, clean_env):
        settings = Settings.from_env(clean_env)

        with pytest.raises(ValueError):
            settings.remote_url()

    def test_invalid_batch_size_rejected(self):
        with pytest.raises(ValueError):
            Settings(batch_size=0)


class TestRemoteCredentials:
    def test_to_url(self):
        credentials = RemoteCredentials(host="db", username="u", password="p", database="d", port=6543)

        url = credentials.to_url()

        assert url.render_as_string(hide_password=False) == "postgresql+asyncpg://u:p@db:6543/d"
