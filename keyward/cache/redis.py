"""
Redis-backed cache.

Values are JSON-encoded, written with ``SET key value EX ttl``. add() is the
same call with ``NX``, so set-if-absent is a single round trip. Clearing a
namespace walks it with SCAN and deletes in batches, so other namespaces in
the same database are untouched. Connection problems come back as failed
results; they never raise.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from keyward.cache.base import CacheAdapter, CacheKind, CacheResult

logger = logging.getLogger(__name__)


class RedisCache(CacheAdapter):
    kind = CacheKind.REDIS

    def __init__(
        self,
        url: str = "redis://127.0.0.1:6379/0",
        namespace: str = "default",
        default_ttl: int = 300,
        client=None,
    ):
        super().__init__(namespace, default_ttl)
        self.url = url
        self._client = client

    def _redis(self):
        if self._client is None:
            import redis

            self._client = redis.Redis.from_url(self.url, decode_responses=True)
        return self._client

    def initialize(self) -> CacheResult:
        try:
            self._redis().ping()
            return CacheResult.ok()
        except Exception as e:
            logger.warning("Redis cache %s: connection failed: %s", self.namespace, e)
            return CacheResult.fail(e)

    def get(self, key: str) -> CacheResult:
        try:
            raw = self._redis().get(self.key(key))
        except Exception as e:
            logger.warning("Redis cache get %s failed: %s", key, e)
            return CacheResult.fail(e)
        if raw is None:
            return CacheResult.miss()
        try:
            return CacheResult.ok(json.loads(raw), hit=True)
        except (TypeError, ValueError) as e:
            logger.warning("Redis cache %s holds non-JSON value: %s", key, e)
            return CacheResult.fail(e)

    def set(self, key: str, value: Any, ttl: int | None = None) -> CacheResult:
        seconds = self._ttl(ttl)
        try:
            payload = json.dumps(value, default=str)
            if seconds > 0:
                self._redis().set(self.key(key), payload, ex=seconds)
            else:
                self._redis().set(self.key(key), payload)
            return CacheResult.ok()
        except Exception as e:
            logger.warning("Redis cache set %s failed: %s", key, e)
            return CacheResult.fail(e)

    def add(self, key: str, value: Any, ttl: int | None = None) -> CacheResult:
        seconds = self._ttl(ttl)
        try:
            payload = json.dumps(value, default=str)
            stored = self._redis().set(
                self.key(key), payload, nx=True, ex=seconds if seconds > 0 else None
            )
            return CacheResult.ok(bool(stored))
        except Exception as e:
            logger.warning("Redis cache add %s failed: %s", key, e)
            return CacheResult.fail(e)

    def delete(self, key: str) -> CacheResult:
        try:
            return CacheResult.ok(bool(self._redis().delete(self.key(key))))
        except Exception as e:
            logger.warning("Redis cache delete %s failed: %s", key, e)
            return CacheResult.fail(e)

    def has(self, key: str) -> CacheResult:
        try:
            found = bool(self._redis().exists(self.key(key)))
            return CacheResult.ok(found, hit=found)
        except Exception as e:
            logger.warning("Redis cache exists %s failed: %s", key, e)
            return CacheResult.fail(e)

    def clear(self) -> CacheResult:
        try:
            client = self._redis()
            batch: list[str] = []
            for full_key in client.scan_iter(match=f"{self.namespace}:*", count=500):
                batch.append(full_key)
                if len(batch) >= 500:
                    client.delete(*batch)
                    batch = []
            if batch:
                client.delete(*batch)
            return CacheResult.ok()
        except Exception as e:
            logger.warning("Redis cache clear %s failed: %s", self.namespace, e)
            return CacheResult.fail(e)

    def stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {"kind": str(self.kind), "namespace": self.namespace}
        try:
            info = self._redis().info("stats")
            stats["hits"] = info.get("keyspace_hits", 0)
            stats["misses"] = info.get("keyspace_misses", 0)
        except Exception as e:
            stats["error"] = str(e)
        return stats

    def close(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.debug("Redis close failed: %s", e)
            self._client = None
