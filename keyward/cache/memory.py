"""In-process LRU cache with per-entry expiry."""

from __future__ import annotations

import copy
import threading
import time
from collections import OrderedDict
from typing import Any

from keyward.cache.base import CacheAdapter, CacheKind, CacheResult


class MemoryCache(CacheAdapter):
    kind = CacheKind.MEMORY

    def __init__(
        self,
        namespace: str = "default",
        default_ttl: int = 300,
        max_size: int = 10_000,
        clock=time.monotonic,
    ):
        super().__init__(namespace, default_ttl)
        self.max_size = max_size
        self._clock = clock
        # key -> (expires_at | None, value); most recently used at the end
        self._entries: OrderedDict[str, tuple[float | None, Any]] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _live(self, full_key: str) -> tuple[bool, Any]:
        """Look up an entry, dropping it if expired. Caller holds the lock."""
        entry = self._entries.get(full_key)
        if entry is None:
            return False, None
        expires_at, value = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[full_key]
            return False, None
        return True, value

    def get(self, key: str) -> CacheResult:
        full_key = self.key(key)
        with self._lock:
            found, value = self._live(full_key)
            if not found:
                self._misses += 1
                return CacheResult.miss()
            self._entries.move_to_end(full_key)
            self._hits += 1
            return CacheResult.ok(copy.deepcopy(value), hit=True)

    def _put(self, full_key: str, value: Any, ttl: int | None) -> None:
        """Store an entry and evict down to max_size. Caller holds the lock."""
        seconds = self._ttl(ttl)
        expires_at = self._clock() + seconds if seconds > 0 else None
        self._entries[full_key] = (expires_at, copy.deepcopy(value))
        self._entries.move_to_end(full_key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            self._evictions += 1

    def set(self, key: str, value: Any, ttl: int | None = None) -> CacheResult:
        with self._lock:
            self._put(self.key(key), value, ttl)
        return CacheResult.ok()

    def add(self, key: str, value: Any, ttl: int | None = None) -> CacheResult:
        full_key = self.key(key)
        with self._lock:
            found, _ = self._live(full_key)
            if found:
                return CacheResult.ok(False)
            self._put(full_key, value, ttl)
        return CacheResult.ok(True)

    def delete(self, key: str) -> CacheResult:
        with self._lock:
            existed = self._entries.pop(self.key(key), None) is not None
        return CacheResult.ok(existed)

    def has(self, key: str) -> CacheResult:
        with self._lock:
            found, _ = self._live(self.key(key))
        return CacheResult.ok(found, hit=found)

    def clear(self) -> CacheResult:
        prefix = f"{self.namespace}:"
        with self._lock:
            for full_key in [k for k in self._entries if k.startswith(prefix)]:
                del self._entries[full_key]
        return CacheResult.ok()

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "kind": str(self.kind),
                "namespace": self.namespace,
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def close(self) -> None:
        with self._lock:
            self._entries.clear()
