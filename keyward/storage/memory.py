"""In-process storage. Nothing survives a restart."""

from __future__ import annotations

import copy
from typing import Any

from keyward.storage.base import (
    QueryOptions,
    StorageAdapter,
    StorageKind,
    StorageResult,
    apply_query,
    matches,
)


class MemoryStorage(StorageAdapter):
    kind = StorageKind.MEMORY

    def __init__(self, namespace: str = "default"):
        super().__init__(namespace)
        self._records: dict[str, dict] = {}

    def _setup(self) -> None:
        pass

    def _persist(self, records: dict[str, dict]) -> None:
        """Hook for subclasses that mirror the collection somewhere durable."""

    def _commit(self, records: dict[str, dict]) -> None:
        """Persist the new collection first; only a successful write replaces the live one."""
        self._persist(records)
        self._records = records

    # Callers get copies so they cannot mutate the stored state in place.

    def get(self, id: str) -> StorageResult:
        def op() -> dict:
            if id not in self._records:
                raise self._missing(id)
            return copy.deepcopy(self._records[id])

        return self._execute(op)

    def get_many(self, options: QueryOptions | None = None) -> StorageResult:
        return self._execute(
            lambda: copy.deepcopy(apply_query(list(self._records.values()), options))
        )

    def create(self, id: str, data: dict) -> StorageResult:
        def op() -> dict:
            if id in self._records:
                raise self._duplicate(id)
            record = copy.deepcopy({**data, "id": id})
            self._commit({**self._records, id: record})
            return copy.deepcopy(record)

        return self._execute(op)

    def update(self, id: str, partial: dict) -> StorageResult:
        def op() -> dict:
            if id not in self._records:
                raise self._missing(id)
            merged = {**self._records[id], **copy.deepcopy(partial), "id": id}
            self._commit({**self._records, id: merged})
            return copy.deepcopy(merged)

        return self._execute(op)

    def delete(self, id: str) -> StorageResult:
        def op() -> bool:
            if id not in self._records:
                raise self._missing(id)
            self._commit({k: v for k, v in self._records.items() if k != id})
            return True

        return self._execute(op)

    def query(self, criteria: dict[str, Any]) -> StorageResult:
        return self._execute(
            lambda: [copy.deepcopy(r) for r in self._records.values() if matches(r, criteria)]
        )

    def clear(self) -> StorageResult:
        return self._execute(lambda: self._commit({}))

    def close(self) -> None:
        with self._lock:
            self._records.clear()
        super().close()
