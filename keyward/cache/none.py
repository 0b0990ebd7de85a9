"""Cache that never holds anything. Every read misses."""

from __future__ import annotations

from typing import Any

from keyward.cache.base import CacheAdapter, CacheKind, CacheResult


class NoCache(CacheAdapter):
    kind = CacheKind.NONE

    def get(self, key: str) -> CacheResult:
        return CacheResult.miss()

    def set(self, key: str, value: Any, ttl: int | None = None) -> CacheResult:
        return CacheResult.ok()

    def add(self, key: str, value: Any, ttl: int | None = None) -> CacheResult:
        return CacheResult.ok(True)

    def delete(self, key: str) -> CacheResult:
        return CacheResult.ok(False)

    def has(self, key: str) -> CacheResult:
        return CacheResult.ok(False)

    def clear(self) -> CacheResult:
        return CacheResult.ok()

    def stats(self) -> dict[str, Any]:
        return {"kind": str(self.kind), "namespace": self.namespace}
