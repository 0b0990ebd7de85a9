"""
Credential data models.

Credential and CredentialInfo are plain dataclasses (the stored shape);
CredentialCreateRequest is a pydantic model because it is the one place
untrusted input enters the credential service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_EXPIRY_SECONDS = 30 * 24 * 60 * 60


class CredentialStatus(StrEnum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class PermissionLevel(StrEnum):
    """Coarse credential tier. Ordered read < standard < admin."""

    READ = "read"
    STANDARD = "standard"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    def satisfies(self, required: PermissionLevel) -> bool:
        return self.rank >= required.rank


_LEVEL_RANK = {PermissionLevel.READ: 0, PermissionLevel.STANDARD: 1, PermissionLevel.ADMIN: 2}


def utcnow() -> datetime:
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class Credential:
    """A stored API credential. ``secret_hash`` is the SHA-256 of the secret half."""

    id: str
    secret_hash: str
    name: str
    client_id: str
    domain: str = "*"
    created_at: datetime = field(default_factory=utcnow)
    expires_at: datetime | None = None
    last_used_at: datetime | None = None
    status: CredentialStatus = CredentialStatus.ACTIVE
    permission_level: PermissionLevel = PermissionLevel.READ
    metadata: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at is not None and (now or utcnow()) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "secret_hash": self.secret_hash,
            "name": self.name,
            "client_id": self.client_id,
            "domain": self.domain,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "last_used_at": _iso(self.last_used_at),
            "status": str(self.status),
            "permission_level": str(self.permission_level),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Credential:
        return cls(
            id=data["id"],
            secret_hash=data["secret_hash"],
            name=data.get("name", ""),
            client_id=data.get("client_id", ""),
            domain=data.get("domain") or "*",
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            expires_at=_parse_dt(data.get("expires_at")),
            last_used_at=_parse_dt(data.get("last_used_at")),
            status=CredentialStatus(data.get("status", CredentialStatus.ACTIVE)),
            permission_level=PermissionLevel(data.get("permission_level", PermissionLevel.READ)),
            metadata=dict(data.get("metadata") or {}),
        )

    def info(self) -> CredentialInfo:
        return CredentialInfo(
            id=self.id,
            name=self.name,
            client_id=self.client_id,
            domain=self.domain,
            created_at=self.created_at,
            expires_at=self.expires_at,
            last_used_at=self.last_used_at,
            status=self.status,
            permission_level=self.permission_level,
            metadata=dict(self.metadata),
        )


@dataclass(frozen=True)
class CredentialInfo:
    """Public view of a credential. Never includes the secret hash."""

    id: str
    name: str
    client_id: str
    domain: str
    created_at: datetime
    expires_at: datetime | None
    last_used_at: datetime | None
    status: CredentialStatus
    permission_level: PermissionLevel
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "client_id": self.client_id,
            "domain": self.domain,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "last_used_at": _iso(self.last_used_at),
            "status": str(self.status),
            "permission_level": str(self.permission_level),
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class CreatedCredential:
    """Returned once on create/refresh. ``raw_key`` is never stored."""

    raw_key: str
    info: CredentialInfo


@dataclass(frozen=True)
class RequestSignature:
    timestamp: int  # epoch milliseconds
    nonce: str
    signature: str


class CredentialCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    client_id: str = Field(min_length=1, max_length=200)
    domain: str = "*"
    expires_in: int = Field(default=DEFAULT_EXPIRY_SECONDS, gt=0)
    permission_level: PermissionLevel = PermissionLevel.READ
    metadata: dict[str, str | int | float | bool | None] = {}

    @field_validator("domain")
    @classmethod
    def _normalize_domain(cls, value: str) -> str:
        patterns = [p.strip().lower() for p in value.split(",") if p.strip()]
        if not patterns:
            raise ValueError("domain must name at least one pattern (or '*')")
        return ",".join(patterns)
