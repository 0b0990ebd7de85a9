"""
Root-level shared test fixtures.

Inherited by the root tests/ suite and the per-package keyward/*/tests suites.
"""

from __future__ import annotations

import pytest

from keyward.config import reset_config
from keyward.crypto import reset_key_cache


@pytest.fixture
def master_key():
    """A fixed 32-byte AES key."""
    return b"k" * 32


@pytest.fixture
def clean_env(monkeypatch):
    """Remove Keyward env vars that leak between tests."""
    for key in [
        "KEYWARD_DATA_DIR",
        "KEYWARD_STORAGE",
        "KEYWARD_ENCRYPTION_KEY",
        "KEYWARD_CACHE",
        "KEYWARD_CACHE_TTL",
        "KEYWARD_DB_HOST",
        "KEYWARD_DB_PORT",
        "KEYWARD_DB_NAME",
        "KEYWARD_DB_USER",
        "KEYWARD_DB_PASSWORD",
        "KEYWARD_DB_POOL_MIN",
        "KEYWARD_DB_POOL_MAX",
        "KEYWARD_SIGNATURE_REQUIRED",
        "KEYWARD_ALERTS_ENABLED",
        "KEYWARD_ALERT_WEBHOOK_URL",
        "KEYWARD_DEFAULT_ROLE",
    ]:
        monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture(autouse=True)
def _reset_key_cache():
    reset_key_cache()
    yield
    reset_key_cache()
