"""
Cache abstraction — namespaced TTL key/value store in front of storage.

Usage:
    from keyward.cache import MemoryCacheConfig, create_cache
    cache = create_cache(MemoryCacheConfig(), "permission")
    cache.set("role:admin", {...}, ttl=300)
"""

from __future__ import annotations

from dataclasses import dataclass

from keyward.cache.base import CacheAdapter, CacheKind, CacheResult
from keyward.cache.memory import MemoryCache
from keyward.cache.none import NoCache
from keyward.cache.redis import RedisCache


@dataclass(frozen=True)
class MemoryCacheConfig:
    ttl: int = 300
    max_size: int = 10_000
    kind: CacheKind = CacheKind.MEMORY


@dataclass(frozen=True)
class RedisCacheConfig:
    url: str = "redis://127.0.0.1:6379/0"
    ttl: int = 300
    kind: CacheKind = CacheKind.REDIS


@dataclass(frozen=True)
class NoCacheConfig:
    kind: CacheKind = CacheKind.NONE


CacheConfig = MemoryCacheConfig | RedisCacheConfig | NoCacheConfig


def create_cache(config: CacheConfig, namespace: str) -> CacheAdapter:
    """Build the adapter for ``config``. Raises ValueError for an unknown kind."""
    match config:
        case MemoryCacheConfig(ttl=ttl, max_size=max_size):
            return MemoryCache(namespace, default_ttl=ttl, max_size=max_size)
        case RedisCacheConfig(url=url, ttl=ttl):
            return RedisCache(url, namespace, default_ttl=ttl)
        case NoCacheConfig():
            return NoCache(namespace)
        case _:
            raise ValueError(f"Unknown cache config: {config!r}")


def cache_config_from_settings(kind: str, ttl: int, max_size: int, redis_url: str) -> CacheConfig:
    """Translate the string settings from keyward.config into a config object."""
    match CacheKind(kind):
        case CacheKind.MEMORY:
            return MemoryCacheConfig(ttl=ttl, max_size=max_size)
        case CacheKind.REDIS:
            return RedisCacheConfig(url=redis_url, ttl=ttl)
        case CacheKind.NONE:
            return NoCacheConfig()


__all__ = [
    "CacheAdapter",
    "CacheConfig",
    "CacheKind",
    "CacheResult",
    "MemoryCache",
    "MemoryCacheConfig",
    "NoCache",
    "NoCacheConfig",
    "RedisCache",
    "RedisCacheConfig",
    "cache_config_from_settings",
    "create_cache",
]
