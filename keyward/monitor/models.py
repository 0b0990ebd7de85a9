"""Security event data models."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

# JSON scalar values allowed in an event's details map
DetailValue = str | int | float | bool | None | list[str] | list[int]


class SecurityEventType(StrEnum):
    RATE_LIMIT = "rate_limit"
    INVALID_INPUT = "invalid_input"
    UNAUTHORIZED = "unauthorized"
    SUSPICIOUS = "suspicious"
    API_KEY_CREATED = "api_key_created"
    API_KEY_REVOKED = "api_key_revoked"
    API_KEY_EXPIRED = "api_key_expired"
    API_KEY_REFRESHED = "api_key_refreshed"


class Severity(StrEnum):
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {s: i for i, s in enumerate(Severity)}


@dataclass(frozen=True)
class SecurityEvent:
    """An immutable record of something security-relevant."""

    type: SecurityEventType
    ip: str
    path: str
    severity: Severity = Severity.LOW
    details: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": str(self.type),
            "timestamp": self.timestamp.isoformat(),
            "ip": self.ip,
            "path": self.path,
            "severity": str(self.severity),
            "details": dict(self.details),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SecurityEvent:
        ts = data.get("timestamp")
        return cls(
            id=data["id"],
            type=SecurityEventType(data["type"]),
            timestamp=datetime.fromisoformat(ts) if isinstance(ts, str) else ts,
            ip=data.get("ip", ""),
            path=data.get("path", ""),
            severity=Severity(data.get("severity", Severity.LOW)),
            details=dict(data.get("details") or {}),
        )


class SecurityEventCreate(BaseModel):
    """Validated input for SecurityMonitor.log_event()."""

    type: SecurityEventType
    ip: str = "unknown"
    path: str = ""
    severity: Severity = Severity.LOW
    details: dict[str, DetailValue] = Field(default_factory=dict)


@dataclass
class EventQuery:
    limit: int | None = 100
    offset: int = 0
    type: SecurityEventType | None = None
    severity: Severity | None = None
    ip: str | None = None
    start: datetime | None = None
    end: datetime | None = None

    def matches(self, event: SecurityEvent) -> bool:
        if self.type and event.type != self.type:
            return False
        if self.severity and event.severity != self.severity:
            return False
        if self.ip and event.ip != self.ip:
            return False
        if self.start and event.timestamp < self.start:
            return False
        if self.end and event.timestamp > self.end:
            return False
        return True


@dataclass
class SecurityStats:
    total: int = 0
    by_type: dict[str, int] = field(
        default_factory=lambda: {str(t): 0 for t in SecurityEventType}
    )
    by_severity: dict[str, int] = field(default_factory=lambda: {str(s): 0 for s in Severity})
    by_ip: dict[str, int] = field(default_factory=dict)
    by_path: dict[str, int] = field(default_factory=dict)
    by_hour: dict[str, int] = field(default_factory=dict)

    def add(self, event: SecurityEvent) -> None:
        self.total += 1
        self.by_type[str(event.type)] = self.by_type.get(str(event.type), 0) + 1
        self.by_severity[str(event.severity)] = self.by_severity.get(str(event.severity), 0) + 1
        self.by_ip[event.ip] = self.by_ip.get(event.ip, 0) + 1
        self.by_path[event.path] = self.by_path.get(event.path, 0) + 1
        # "YYYY-MM-DDTHH" bucket in UTC
        hour = event.timestamp.astimezone(UTC).strftime("%Y-%m-%dT%H")
        self.by_hour[hour] = self.by_hour.get(hour, 0) + 1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SecurityStats:
        return cls(**data)
