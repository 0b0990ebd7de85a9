"""Fixtures for the service-level suite: a fully wired in-memory Keyward."""

import pytest

from keyward.app import build_services
from keyward.config import AuthSettings, Config, MonitorSettings, StorageSettings


@pytest.fixture
def config(tmp_path):
    return Config(
        storage=StorageSettings(kind="memory", path=tmp_path / "data"),
        monitor=MonitorSettings(log_dir=tmp_path / "logs"),
        auth=AuthSettings(signing_secret="test-signing-secret"),
    )


@pytest.fixture
def services(config, master_key):
    svc = build_services(config, master_key=master_key)
    svc.initialize()
    yield svc
    svc.shutdown()


@pytest.fixture
def issue(services):
    """Issue a key and return (raw_key, info)."""

    def _issue(level="standard", domain="*", client_id="acme"):
        created = services.credentials.create(
            {"name": "test", "client_id": client_id, "domain": domain, "permission_level": level}
        )
        return created.raw_key, created.info

    return _issue
