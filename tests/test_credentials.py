"""Tests for keyward.credentials — key lifecycle and request signing."""

import threading
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from keyward.cache import CacheResult, MemoryCache, NoCache
from keyward.credentials import (
    CredentialService,
    domain_allowed,
    has_permission,
    signature_payload,
)
from keyward.crypto import hash_secret
from keyward.errors import (
    DomainNotAllowedError,
    ExpiredCredentialError,
    InvalidCredentialError,
    RevokedCredentialError,
)
from keyward.models import (
    Credential,
    CredentialStatus,
    PermissionLevel,
    RequestSignature,
    utcnow,
)
from keyward.monitor import EventQuery, SecurityEventType, SecurityMonitor
from keyward.storage import MemoryStorage, StorageResult

SECRET = "signing-secret"


@pytest.fixture
def storage():
    return MemoryStorage("api-keys")


@pytest.fixture
def monitor():
    return SecurityMonitor()


@pytest.fixture
def service(storage, monitor):
    s = CredentialService(storage, SECRET, monitor=monitor)
    s.initialize()
    return s


def _request(**overrides):
    return {"name": "web", "client_id": "acme", **overrides}


def _event_types(monitor):
    return [e.type for e in monitor.get_events()]


# ─── Domain matching ─────────────────────────────────────────────────


class TestDomainAllowed:
    def test_star_allows_everything(self):
        assert domain_allowed("*", "anything.example")

    def test_exact_is_case_insensitive(self):
        assert domain_allowed("app.example.com", "APP.example.com")
        assert not domain_allowed("app.example.com", "example.com")

    def test_wildcard_matches_subdomains_only(self):
        assert domain_allowed("*.example.com", "a.example.com")
        assert domain_allowed("*.example.com", "a.b.example.com")
        assert not domain_allowed("*.example.com", "example.com")
        assert not domain_allowed("*.example.com", "badexample.com")

    def test_list(self):
        allowed = "example.com, *.example.org"
        assert domain_allowed(allowed, "example.com")
        assert domain_allowed(allowed, "www.example.org")
        assert not domain_allowed(allowed, "example.net")


class TestPermissionLevels:
    def test_ordering(self):
        assert has_permission(PermissionLevel.ADMIN, PermissionLevel.STANDARD)
        assert has_permission(PermissionLevel.READ, PermissionLevel.READ)
        assert not has_permission(PermissionLevel.READ, PermissionLevel.STANDARD)


# ─── Create / validate ───────────────────────────────────────────────


class TestCreate:
    def test_raw_key_shape(self, service):
        created = service.create(_request())
        cred_id, _, secret = created.raw_key.partition(".")
        assert cred_id == created.info.id
        assert len(cred_id) == 32
        assert len(secret) == 64

    def test_defaults(self, service):
        info = service.create(_request()).info
        assert info.status == CredentialStatus.ACTIVE
        assert info.permission_level == PermissionLevel.READ
        assert info.domain == "*"
        assert info.expires_at - info.created_at == timedelta(days=30)

    def test_only_hash_is_stored(self, service, storage):
        created = service.create(_request())
        secret = created.raw_key.partition(".")[2]
        record = storage.get(created.info.id).data
        assert record["secret_hash"] == hash_secret(secret)
        assert secret not in str(record)
        assert "secret_hash" not in created.info.to_dict()

    def test_domain_is_normalized(self, service):
        info = service.create(_request(domain=" App.Example.com, *.Example.org ")).info
        assert info.domain == "app.example.com,*.example.org"

    @pytest.mark.parametrize(
        "bad",
        [{"name": ""}, {"client_id": ""}, {"expires_in": 0}, {"permission_level": "root"}],
    )
    def test_invalid_request(self, service, bad):
        with pytest.raises(ValidationError):
            service.create(_request(**bad))

    def test_logs_created_event(self, service, monitor):
        service.create(_request())
        assert _event_types(monitor) == [SecurityEventType.API_KEY_CREATED]

    def test_storage_failure_keeps_key_usable(self, monitor):
        storage = MagicMock()
        storage.get_many.return_value = StorageResult.ok([])
        storage.create.return_value = StorageResult.fail(ConnectionError("db down"))
        storage.update.return_value = StorageResult.fail(ConnectionError("db down"))
        service = CredentialService(storage, SECRET, monitor=monitor)

        created = service.create(_request())
        assert service.validate(created.raw_key).id == created.info.id


class TestValidate:
    def test_valid_key(self, service):
        created = service.create(_request())
        info = service.validate(created.raw_key)
        assert info.id == created.info.id
        assert info.last_used_at is not None

    @pytest.mark.parametrize("key", ["", "no-dot", ".secret", "id.", "a.b.c"])
    def test_malformed(self, service, key):
        with pytest.raises(InvalidCredentialError):
            service.validate(key)

    def test_wrong_secret(self, service):
        created = service.create(_request())
        with pytest.raises(InvalidCredentialError):
            service.validate(f"{created.info.id}.{'0' * 64}")

    def test_unknown_id(self, service):
        with pytest.raises(InvalidCredentialError):
            service.validate(f"{'f' * 32}.{'0' * 64}")

    def test_revoked(self, service):
        created = service.create(_request())
        service.revoke(created.info.id)
        with pytest.raises(RevokedCredentialError):
            service.validate(created.raw_key)

    def test_expired_flips_status_once(self, storage, monitor):
        now = utcnow()
        secret = "s" * 64
        storage.create(
            "old",
            Credential(
                id="old",
                secret_hash=hash_secret(secret),
                name="legacy",
                client_id="acme",
                created_at=now - timedelta(days=60),
                expires_at=now - timedelta(days=30),
            ).to_dict(),
        )
        service = CredentialService(storage, SECRET, monitor=monitor)

        with pytest.raises(ExpiredCredentialError):
            service.validate(f"old.{secret}")
        with pytest.raises(ExpiredCredentialError):
            service.validate(f"old.{secret}")

        assert storage.get("old").data["status"] == "expired"
        assert service.get_info("old").status == CredentialStatus.EXPIRED
        assert _event_types(monitor).count(SecurityEventType.API_KEY_EXPIRED) == 1

    def test_domain_restriction(self, service):
        created = service.create(_request(domain="*.example.com"))
        assert service.validate(created.raw_key, "app.example.com")
        with pytest.raises(DomainNotAllowedError):
            service.validate(created.raw_key, "evil.com")

    def test_no_domain_skips_check(self, service):
        created = service.create(_request(domain="example.com"))
        assert service.validate(created.raw_key)

    def test_survives_reload(self, storage):
        first = CredentialService(storage, SECRET)
        created = first.create(_request())

        second = CredentialService(storage, SECRET)
        second.initialize()
        assert second.validate(created.raw_key).id == created.info.id


# ─── Revoke / refresh / listing ──────────────────────────────────────


class TestLifecycle:
    def test_revoke_unknown(self, service):
        assert service.revoke("nope") is False

    def test_revoke_persists(self, service, storage, monitor):
        created = service.create(_request())
        assert service.revoke(created.info.id)
        assert storage.get(created.info.id).data["status"] == "revoked"
        assert SecurityEventType.API_KEY_REVOKED in _event_types(monitor)

    def test_refresh_replaces_key(self, service, monitor):
        old = service.create(
            _request(domain="example.com", permission_level="admin", metadata={"team": "ops"})
        )
        new = service.refresh(old.info.id, expires_in=3600)

        assert new.info.id != old.info.id
        assert new.info.permission_level == PermissionLevel.ADMIN
        assert new.info.domain == "example.com"
        assert new.info.metadata == {"team": "ops"}
        assert new.info.expires_at - new.info.created_at == timedelta(hours=1)
        with pytest.raises(RevokedCredentialError):
            service.validate(old.raw_key)
        assert service.validate(new.raw_key).id == new.info.id

        refreshed = monitor.get_events(EventQuery(type=SecurityEventType.API_KEY_REFRESHED))
        assert refreshed[0].details["replaced_by"] == new.info.id

    def test_refresh_inactive_returns_none(self, service):
        created = service.create(_request())
        service.revoke(created.info.id)
        assert service.refresh(created.info.id) is None
        assert service.refresh("unknown") is None

    def test_listing(self, service):
        service.create(_request(client_id="acme"))
        service.create(_request(client_id="acme"))
        service.create(_request(client_id="other"))
        assert len(service.list_by_client("acme")) == 2
        assert len(service.list_all()) == 3
        assert service.list_by_client("nobody") == []


# ─── Request signing ─────────────────────────────────────────────────


class TestSignatures:
    def test_payload_shape(self):
        assert signature_payload("id", "GET", "/x", 5, "n") == "id:GET:/x:5:n"
        assert signature_payload("id", "POST", "/x", 5, "n", {"a": 1}) == 'id:POST:/x:5:n:{"a":1}'

    def test_roundtrip(self, service):
        sig = service.generate_signature("cred", "POST", "/api/music", {"title": "x"})
        assert service.verify_signature("cred", "POST", "/api/music", sig, {"title": "x"})

    def test_tampered_body(self, service):
        sig = service.generate_signature("cred", "POST", "/api/music", {"title": "x"})
        assert not service.verify_signature("cred", "POST", "/api/music", sig, {"title": "y"})

    def test_tampered_path(self, service):
        sig = service.generate_signature("cred", "GET", "/api/music")
        assert not service.verify_signature("cred", "GET", "/api/users", sig)

    def test_replay_rejected(self, service):
        sig = service.generate_signature("cred", "GET", "/api/music")
        assert service.verify_signature("cred", "GET", "/api/music", sig)
        assert not service.verify_signature("cred", "GET", "/api/music", sig)

    def test_bad_signature_does_not_burn_nonce(self, service):
        sig = service.generate_signature("cred", "GET", "/api/music")
        forged = RequestSignature(sig.timestamp, sig.nonce, "0" * 64)
        assert not service.verify_signature("cred", "GET", "/api/music", forged)
        assert service.verify_signature("cred", "GET", "/api/music", sig)

    def test_expired_timestamp(self, service):
        sig = service.generate_signature("cred", "GET", "/x")
        later = (sig.timestamp + service.signature_window_ms + 1000) / 1000
        with patch("keyward.credentials.time.time", return_value=later):
            assert not service.verify_signature("cred", "GET", "/x", sig)

    def test_future_timestamp_beyond_skew(self, service):
        sig = service.generate_signature("cred", "GET", "/x")
        earlier = (sig.timestamp - 60_000) / 1000
        with patch("keyward.credentials.time.time", return_value=earlier):
            assert not service.verify_signature("cred", "GET", "/x", sig)

    def test_different_secret_rejected(self, storage):
        a = CredentialService(storage, "secret-a")
        b = CredentialService(storage, "secret-b")
        sig = a.generate_signature("cred", "GET", "/x")
        assert not b.verify_signature("cred", "GET", "/x", sig)

    def test_shared_nonce_cache(self, storage):
        nonces = MemoryCache("api-keys")
        a = CredentialService(storage, SECRET, nonce_cache=nonces)
        b = CredentialService(storage, SECRET, nonce_cache=nonces)
        sig = a.generate_signature("cred", "GET", "/x")
        assert a.verify_signature("cred", "GET", "/x", sig)
        assert not b.verify_signature("cred", "GET", "/x", sig)

    def test_nonce_cache_uses_signature_window(self, storage):
        nonces = MagicMock(wraps=MemoryCache("api-keys"))
        service = CredentialService(storage, SECRET, nonce_cache=nonces, signature_window_ms=60_000)
        sig = service.generate_signature("cred", "GET", "/x")
        service.verify_signature("cred", "GET", "/x", sig)
        assert nonces.add.call_args.kwargs["ttl"] == 60

    def test_concurrent_replay_accepts_one(self, storage):
        service = CredentialService(storage, SECRET, nonce_cache=MemoryCache("api-keys"))
        sig = service.generate_signature("cred", "GET", "/x")
        barrier = threading.Barrier(8)
        results = []

        def verify():
            barrier.wait()
            results.append(service.verify_signature("cred", "GET", "/x", sig))

        threads = [threading.Thread(target=verify) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sorted(results) == [False] * 7 + [True]

    def test_unavailable_nonce_cache_rejects(self, storage):
        nonces = MagicMock()
        nonces.add.return_value = CacheResult.fail(ConnectionError("redis down"))
        service = CredentialService(storage, SECRET, nonce_cache=nonces)
        sig = service.generate_signature("cred", "GET", "/x")
        assert not service.verify_signature("cred", "GET", "/x", sig)

    def test_no_cache_still_signs(self, storage):
        # NoCache forgets nonces but fresh signatures still verify
        service = CredentialService(storage, SECRET, nonce_cache=NoCache("api-keys"))
        sig = service.generate_signature("cred", "GET", "/x")
        assert service.verify_signature("cred", "GET", "/x", sig)
