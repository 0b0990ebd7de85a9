"""
Credential service — issue, validate, revoke and refresh API keys.

A raw key has the form ``<id>.<secret>``: id is 16 random bytes hex, secret is
32 random bytes hex. Only SHA-256(secret) is stored, so the raw key is shown
once at creation and never again.

All credentials are held in an in-memory index loaded from the ``api-keys``
storage namespace at initialize(). Reads are served from the index; writes go
to the index first and then to storage on a best-effort basis.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import timedelta
from typing import Any

from keyward.cache.base import CacheAdapter
from keyward.cache.memory import MemoryCache
from keyward.crypto import generate_token, hash_secret, hmac_sha256, safe_compare
from keyward.errors import (
    DomainNotAllowedError,
    ExpiredCredentialError,
    InvalidCredentialError,
    RevokedCredentialError,
)
from keyward.models import (
    DEFAULT_EXPIRY_SECONDS,
    CreatedCredential,
    Credential,
    CredentialCreateRequest,
    CredentialInfo,
    CredentialStatus,
    PermissionLevel,
    RequestSignature,
    utcnow,
)
from keyward.storage.base import StorageAdapter

logger = logging.getLogger(__name__)

SIGNATURE_WINDOW_MS = 5 * 60 * 1000
# Signed timestamps this far ahead of the server clock are still accepted
CLOCK_SKEW_MS = 30 * 1000


def domain_allowed(allowed: str, domain: str) -> bool:
    """Check ``domain`` against a credential's comma-separated allow-list.

    ``*`` allows everything. ``*.example.com`` matches proper subdomains only
    (not ``example.com`` and not ``badexample.com``). Anything else must match
    exactly, ignoring case.
    """
    domain = domain.strip().lower().rstrip(".")
    for pattern in (p.strip().lower() for p in allowed.split(",")):
        if not pattern:
            continue
        if pattern == "*":
            return True
        if pattern.startswith("*."):
            if domain.endswith(pattern[1:]) and len(domain) > len(pattern) - 1:
                return True
        elif domain == pattern:
            return True
    return False


def has_permission(level: PermissionLevel, required: PermissionLevel) -> bool:
    return level.satisfies(required)


def signature_payload(
    credential_id: str, method: str, path: str, timestamp: int, nonce: str, body: Any = None
) -> str:
    payload = f"{credential_id}:{method}:{path}:{timestamp}:{nonce}"
    if body:
        text = body if isinstance(body, str) else json.dumps(body, separators=(",", ":"))
        payload += f":{text}"
    return payload


class CredentialService:
    def __init__(
        self,
        storage: StorageAdapter,
        signing_secret: str | bytes,
        monitor=None,
        nonce_cache: CacheAdapter | None = None,
        signature_window_ms: int = SIGNATURE_WINDOW_MS,
        default_expiry_seconds: int = DEFAULT_EXPIRY_SECONDS,
    ):
        self.storage = storage
        self.monitor = monitor
        self.signature_window_ms = signature_window_ms
        self.default_expiry_seconds = default_expiry_seconds
        self._signing_secret = signing_secret
        self._nonces = nonce_cache or MemoryCache(
            "nonce", default_ttl=max(signature_window_ms // 1000, 1)
        )
        self._index: dict[str, Credential] = {}
        self._lock = threading.Lock()
        self._initialized = False

    # ── Lifecycle ────────────────────────────────────────────────────

    def initialize(self) -> None:
        with self._lock:
            if self._initialized:
                return
            self._index.clear()
            result = self.storage.get_many()
            if result.success:
                for record in result.data:
                    try:
                        cred = Credential.from_dict(record)
                    except (KeyError, ValueError) as e:
                        logger.error("Skipping malformed credential record: %s", e)
                        continue
                    self._index[cred.id] = cred
                logger.info("Loaded %d credentials", len(self._index))
            else:
                logger.error("Could not load credentials, starting empty: %s", result.error)
            self._initialized = True

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            self.initialize()

    # ── Persistence (best-effort) ────────────────────────────────────

    def _persist_new(self, cred: Credential) -> None:
        result = self.storage.create(cred.id, cred.to_dict())
        if not result.success:
            logger.warning("Failed to persist credential %s: %s", cred.id, result.error)

    def _persist_update(self, cred: Credential, **fields: Any) -> None:
        result = self.storage.update(cred.id, fields)
        if not result.success:
            logger.warning("Failed to update credential %s: %s", cred.id, result.error)

    def _log(
        self, event_type: str, cred: Credential, severity: str = "info", **details: Any
    ) -> None:
        if self.monitor is None:
            return
        try:
            self.monitor.log_event(
                {
                    "type": event_type,
                    "ip": "internal",
                    "path": f"/credentials/{cred.id}",
                    "severity": severity,
                    "details": {"credential_id": cred.id, "client_id": cred.client_id, **details},
                }
            )
        except Exception as e:
            logger.warning("Security event %s for %s not recorded: %s", event_type, cred.id, e)

    # ── Operations ───────────────────────────────────────────────────

    def create(self, request: CredentialCreateRequest | dict[str, Any]) -> CreatedCredential:
        """Issue a new credential. The returned raw_key is never retrievable again."""
        if isinstance(request, dict):
            request = CredentialCreateRequest(**request)
        self._ensure_initialized()

        cred_id = generate_token(16)
        secret = generate_token(32)
        now = utcnow()
        cred = Credential(
            id=cred_id,
            secret_hash=hash_secret(secret),
            name=request.name,
            client_id=request.client_id,
            domain=request.domain,
            created_at=now,
            expires_at=now + timedelta(seconds=request.expires_in),
            permission_level=request.permission_level,
            metadata=dict(request.metadata),
        )

        with self._lock:
            self._index[cred_id] = cred
        self._persist_new(cred)

        logger.info("Created credential %s for client %s", cred_id, cred.client_id)
        self._log("api_key_created", cred, level=str(cred.permission_level))
        return CreatedCredential(raw_key=f"{cred_id}.{secret}", info=cred.info())

    def validate(self, presented_key: str, domain: str | None = None) -> CredentialInfo:
        """Return the credential's public info, or raise a typed credential error."""
        self._ensure_initialized()

        cred_id, sep, secret = (presented_key or "").partition(".")
        if not sep or not cred_id or not secret:
            raise InvalidCredentialError("Malformed API key")

        with self._lock:
            cred = self._index.get(cred_id)
        if cred is None or not safe_compare(hash_secret(secret), cred.secret_hash):
            raise InvalidCredentialError("Invalid API key")

        if cred.status == CredentialStatus.REVOKED:
            raise RevokedCredentialError("API key has been revoked", credential_id=cred.id)

        if cred.status == CredentialStatus.EXPIRED or cred.is_expired():
            if cred.status != CredentialStatus.EXPIRED:
                with self._lock:
                    cred.status = CredentialStatus.EXPIRED
                self._persist_update(cred, status=str(CredentialStatus.EXPIRED))
                self._log("api_key_expired", cred, severity="low")
            raise ExpiredCredentialError("API key has expired", credential_id=cred.id)

        if domain and not domain_allowed(cred.domain, domain):
            raise DomainNotAllowedError(
                f"Domain {domain!r} is not allowed for this API key", credential_id=cred.id
            )

        now = utcnow()
        with self._lock:
            cred.last_used_at = now
        self._persist_update(cred, last_used_at=now.isoformat())
        return cred.info()

    def revoke(self, cred_id: str) -> bool:
        self._ensure_initialized()
        with self._lock:
            cred = self._index.get(cred_id)
            if cred is None:
                return False
            cred.status = CredentialStatus.REVOKED
        self._persist_update(cred, status=str(CredentialStatus.REVOKED))
        logger.info("Revoked credential %s (client %s)", cred_id, cred.client_id)
        self._log("api_key_revoked", cred, severity="low")
        return True

    def refresh(self, cred_id: str, expires_in: int | None = None) -> CreatedCredential | None:
        """Revoke an active credential and issue a replacement with the same attributes."""
        self._ensure_initialized()
        with self._lock:
            cred = self._index.get(cred_id)
        if cred is None or cred.status != CredentialStatus.ACTIVE:
            return None

        self.revoke(cred_id)
        created = self.create(
            CredentialCreateRequest(
                name=cred.name,
                client_id=cred.client_id,
                domain=cred.domain,
                expires_in=expires_in or self.default_expiry_seconds,
                permission_level=cred.permission_level,
                metadata=cred.metadata,
            )
        )
        self._log("api_key_refreshed", cred, replaced_by=created.info.id)
        return created

    def get_info(self, cred_id: str) -> CredentialInfo | None:
        self._ensure_initialized()
        with self._lock:
            cred = self._index.get(cred_id)
        return cred.info() if cred else None

    def list_by_client(self, client_id: str) -> list[CredentialInfo]:
        self._ensure_initialized()
        with self._lock:
            return [c.info() for c in self._index.values() if c.client_id == client_id]

    def list_all(self) -> list[CredentialInfo]:
        self._ensure_initialized()
        with self._lock:
            return [c.info() for c in self._index.values()]

    # ── Request signing ──────────────────────────────────────────────

    def generate_signature(
        self, credential_id: str, method: str, path: str, body: Any = None
    ) -> RequestSignature:
        timestamp = int(time.time() * 1000)
        nonce = generate_token(8)
        payload = signature_payload(credential_id, method, path, timestamp, nonce, body)
        return RequestSignature(
            timestamp=timestamp,
            nonce=nonce,
            signature=hmac_sha256(self._signing_secret, payload),
        )

    def verify_signature(
        self,
        credential_id: str,
        method: str,
        path: str,
        signature: RequestSignature,
        body: Any = None,
    ) -> bool:
        """Check a request signature: window, replay, then HMAC (constant time)."""
        now = int(time.time() * 1000)
        age = now - signature.timestamp
        if age > self.signature_window_ms or age < -CLOCK_SKEW_MS:
            return False

        payload = signature_payload(
            credential_id, method, path, signature.timestamp, signature.nonce, body
        )
        expected = hmac_sha256(self._signing_secret, payload)
        if not safe_compare(expected, signature.signature):
            return False

        # Only a correctly signed request burns its nonce
        nonce_key = f"{credential_id}:{signature.nonce}"
        burned = self._nonces.add(nonce_key, True, ttl=max(self.signature_window_ms // 1000, 1))
        if not burned.success:
            logger.warning(
                "Nonce cache unavailable, rejecting signed request for %s: %s",
                credential_id,
                burned.error,
            )
            return False
        if not burned.data:
            logger.warning("Replayed nonce for credential %s", credential_id)
            return False
        return True
