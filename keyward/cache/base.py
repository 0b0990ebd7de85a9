"""
Cache adapter interface.

The cache is an accelerator only. A failure never raises to callers; it comes
back as a failed CacheResult and callers fall through to storage.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class CacheKind(StrEnum):
    MEMORY = "memory"
    REDIS = "redis"
    NONE = "none"


@dataclass
class CacheResult:
    """Outcome of a cache call. ``hit`` is only meaningful for get()."""

    success: bool
    data: Any = None
    error: Exception | None = None
    hit: bool = False

    @classmethod
    def ok(cls, data: Any = None, hit: bool = False) -> CacheResult:
        return cls(success=True, data=data, hit=hit)

    @classmethod
    def miss(cls) -> CacheResult:
        return cls(success=True, hit=False)

    @classmethod
    def fail(cls, error: Exception) -> CacheResult:
        return cls(success=False, error=error)


class CacheAdapter(ABC):
    """Namespaced key/value cache with per-entry TTL (seconds)."""

    kind: CacheKind

    def __init__(self, namespace: str = "default", default_ttl: int = 300):
        self.namespace = namespace
        self.default_ttl = default_ttl

    def key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _ttl(self, ttl: int | None) -> int:
        """Resolve the effective TTL. 0 or less means no expiry."""
        return self.default_ttl if ttl is None else ttl

    def initialize(self) -> CacheResult:
        return CacheResult.ok()

    @abstractmethod
    def get(self, key: str) -> CacheResult: ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl: int | None = None) -> CacheResult: ...

    @abstractmethod
    def add(self, key: str, value: Any, ttl: int | None = None) -> CacheResult:
        """Set ``key`` only if it is absent, atomically. ``data`` is True if stored."""

    @abstractmethod
    def delete(self, key: str) -> CacheResult: ...

    @abstractmethod
    def has(self, key: str) -> CacheResult: ...

    @abstractmethod
    def clear(self) -> CacheResult: ...

    @abstractmethod
    def stats(self) -> dict[str, Any]: ...

    def close(self) -> None:
        pass
