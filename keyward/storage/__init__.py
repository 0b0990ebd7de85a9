"""
Storage abstraction — uniform, namespaced, encrypted-at-rest persistence.

Usage:
    from keyward.storage import FileStorageConfig, create_storage
    store = create_storage(FileStorageConfig(path=data_dir), "api-keys", master_key)
    store.initialize()
    result = store.get("abc")
    if result.success:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from keyward.storage.base import (
    QueryOptions,
    StorageAdapter,
    StorageKind,
    StorageResult,
    apply_query,
)
from keyward.storage.file import FileStorage
from keyward.storage.memory import MemoryStorage
from keyward.storage.postgres import ConnectionFactory, PostgresStorage


@dataclass(frozen=True)
class MemoryStorageConfig:
    kind: StorageKind = StorageKind.MEMORY


@dataclass(frozen=True)
class FileStorageConfig:
    path: Path
    kind: StorageKind = StorageKind.FILE


@dataclass(frozen=True)
class PostgresStorageConfig:
    table_prefix: str = "keyward_"
    connection_factory: ConnectionFactory | None = None
    kind: StorageKind = StorageKind.POSTGRES


StorageConfig = MemoryStorageConfig | FileStorageConfig | PostgresStorageConfig


def create_storage(config: StorageConfig, namespace: str, master_key: bytes) -> StorageAdapter:
    """Build the adapter for ``config``. Raises ValueError for an unknown kind."""
    match config:
        case MemoryStorageConfig():
            return MemoryStorage(namespace)
        case FileStorageConfig(path=path):
            return FileStorage(path, master_key, namespace)
        case PostgresStorageConfig(table_prefix=prefix, connection_factory=factory):
            return PostgresStorage(master_key, namespace, prefix, factory)
        case _:
            raise ValueError(f"Unknown storage config: {config!r}")


def storage_config_from_settings(
    kind: str, path: Path, table_prefix: str = "keyward_"
) -> StorageConfig:
    """Translate the string settings from keyward.config into a config object."""
    match StorageKind(kind):
        case StorageKind.MEMORY:
            return MemoryStorageConfig()
        case StorageKind.FILE:
            return FileStorageConfig(path=path)
        case StorageKind.POSTGRES:
            return PostgresStorageConfig(table_prefix=table_prefix)


__all__ = [
    "FileStorage",
    "FileStorageConfig",
    "MemoryStorage",
    "MemoryStorageConfig",
    "PostgresStorage",
    "PostgresStorageConfig",
    "QueryOptions",
    "StorageAdapter",
    "StorageConfig",
    "StorageKind",
    "StorageResult",
    "apply_query",
    "create_storage",
    "storage_config_from_settings",
]
