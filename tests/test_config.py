"""Tests for keyward.config — centralized configuration."""

from pathlib import Path

import pytest

from keyward.config import (
    Config,
    DatabaseSettings,
    RedisSettings,
    SmtpSettings,
    get_config,
    reset_config,
)


@pytest.fixture(autouse=True)
def _clean(clean_env):
    yield


class TestDatabaseSettings:
    def test_defaults(self):
        db = DatabaseSettings()
        assert db.host == ""
        assert db.port == 5432
        assert db.name == "keyward"
        assert (db.pool_min, db.pool_max) == (1, 10)

    def test_dsn(self):
        db = DatabaseSettings(host="db.example.com", port=5433, name="test", user="tester")
        assert "dbname=test" in db.dsn
        assert "host=db.example.com" in db.dsn
        assert "port=5433" in db.dsn
        assert "user=tester" in db.dsn
        assert "password" not in db.dsn

    def test_dict(self):
        d = DatabaseSettings(host="localhost", name="test", user="u", password="p").dict
        assert d == {"dbname": "test", "port": 5432, "host": "localhost", "user": "u", "password": "p"}

    def test_frozen(self):
        db = DatabaseSettings()
        with pytest.raises(AttributeError):
            db.host = "other"  # type: ignore[misc]


class TestRedisSettings:
    def test_url_no_password(self):
        assert RedisSettings().url == "redis://127.0.0.1:6379/0"

    def test_url_with_password(self):
        assert RedisSettings(password="pass123").url == "redis://:pass123@127.0.0.1:6379/0"


class TestSmtpSettings:
    def test_configured_needs_host_sender_and_recipients(self):
        assert not SmtpSettings().configured
        assert not SmtpSettings(host="smtp", sender="a@x").configured
        assert SmtpSettings(host="smtp", sender="a@x", recipients=("b@x",)).configured


class TestGetConfig:
    def test_returns_config(self):
        assert isinstance(get_config(), Config)

    def test_singleton(self):
        assert get_config() is get_config()

    def test_reset(self):
        first = get_config()
        reset_config()
        assert get_config() is not first

    def test_defaults(self):
        cfg = get_config()
        assert cfg.storage.kind == "file"
        assert cfg.cache.kind == "memory"
        assert cfg.cache.ttl == 300
        assert cfg.auth.signature_required is False
        assert cfg.auth.default_role == "read"
        assert cfg.alerts.enabled is False

    def test_env_override_storage(self, monkeypatch, tmp_path):
        monkeypatch.setenv("KEYWARD_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("KEYWARD_STORAGE", "postgres")
        monkeypatch.setenv("KEYWARD_DB_HOST", "db.remote.com")
        monkeypatch.setenv("KEYWARD_DB_PORT", "5433")
        cfg = get_config()
        assert cfg.storage.kind == "postgres"
        assert cfg.storage.path == Path(tmp_path)
        assert cfg.db.host == "db.remote.com"
        assert cfg.db.port == 5433

    def test_security_log_dir_follows_data_dir(self, monkeypatch, tmp_path):
        monkeypatch.setenv("KEYWARD_DATA_DIR", str(tmp_path / "data"))
        assert get_config().monitor.log_dir == tmp_path / "logs" / "security"

    def test_env_bools(self, monkeypatch):
        monkeypatch.setenv("KEYWARD_SIGNATURE_REQUIRED", "yes")
        monkeypatch.setenv("KEYWARD_ALERTS_ENABLED", "1")
        cfg = get_config()
        assert cfg.auth.signature_required is True
        assert cfg.alerts.enabled is True

    def test_env_recipients_split(self, monkeypatch):
        monkeypatch.setenv("KEYWARD_ALERT_EMAIL_TO", "a@x.com, b@x.com,")
        assert get_config().alerts.smtp.recipients == ("a@x.com", "b@x.com")

    def test_env_cache(self, monkeypatch):
        monkeypatch.setenv("KEYWARD_CACHE", "redis")
        monkeypatch.setenv("KEYWARD_CACHE_TTL", "60")
        cfg = get_config()
        assert cfg.cache.kind == "redis"
        assert cfg.cache.ttl == 60
