"""
Storage adapter interface shared by every backend.

Records are JSON-compatible dicts keyed by an id string. Every operation
returns a StorageResult instead of raising, so an expected miss (unknown id,
duplicate create) is an ordinary branch for the caller.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from keyward.errors import ConflictError, NotFoundError, StorageUnavailableError

logger = logging.getLogger(__name__)


class StorageKind(StrEnum):
    MEMORY = "memory"
    FILE = "file"
    POSTGRES = "postgres"


@dataclass
class StorageResult:
    """Tagged outcome of a storage call: success + data, or failure + error."""

    success: bool
    data: Any = None
    error: Exception | None = None

    @classmethod
    def ok(cls, data: Any = None) -> StorageResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: Exception) -> StorageResult:
        return cls(success=False, error=error)

    @property
    def not_found(self) -> bool:
        return isinstance(self.error, NotFoundError)


@dataclass
class QueryOptions:
    """Filter (field equality), sort and paging for get_many()."""

    limit: int | None = None
    offset: int = 0
    sort_field: str | None = None
    sort_order: str = "asc"  # asc | desc
    filter: dict[str, Any] = field(default_factory=dict)


def matches(record: dict, criteria: dict[str, Any]) -> bool:
    """True when every criteria key equals the record's value."""
    return all(record.get(key) == value for key, value in criteria.items())


def apply_query(records: list[dict], options: QueryOptions | None) -> list[dict]:
    """Filter → sort → page, in that order."""
    if options is None:
        return records

    items = [r for r in records if matches(r, options.filter)] if options.filter else records

    if options.sort_field:
        sort_field = options.sort_field
        # None sorts last regardless of direction
        present = [r for r in items if r.get(sort_field) is not None]
        missing = [r for r in items if r.get(sort_field) is None]
        present.sort(key=lambda r: r[sort_field], reverse=options.sort_order == "desc")
        items = present + missing

    start = max(options.offset or 0, 0)
    if options.limit is not None:
        return items[start : start + options.limit]
    return items[start:]


class StorageAdapter(ABC):
    """Uniform persistence interface. One instance per namespace."""

    kind: StorageKind

    def __init__(self, namespace: str = "default"):
        self.namespace = namespace
        self._initialized = False
        self._lock = threading.RLock()

    # ── Lifecycle ────────────────────────────────────────────────────

    def initialize(self) -> None:
        """Prepare the backend. Idempotent."""
        with self._lock:
            if self._initialized:
                return
            self._setup()
            self._initialized = True

    def close(self) -> None:
        self._initialized = False

    @abstractmethod
    def _setup(self) -> None: ...

    # ── Operations ───────────────────────────────────────────────────

    @abstractmethod
    def get(self, id: str) -> StorageResult: ...

    @abstractmethod
    def get_many(self, options: QueryOptions | None = None) -> StorageResult: ...

    @abstractmethod
    def create(self, id: str, data: dict) -> StorageResult: ...

    @abstractmethod
    def update(self, id: str, partial: dict) -> StorageResult: ...

    @abstractmethod
    def delete(self, id: str) -> StorageResult: ...

    @abstractmethod
    def query(self, criteria: dict[str, Any]) -> StorageResult: ...

    @abstractmethod
    def clear(self) -> StorageResult: ...

    # ── Helpers ──────────────────────────────────────────────────────

    def _execute(self, operation: Callable[[], Any]) -> StorageResult:
        """Run ``operation`` under the namespace lock and tag the outcome."""
        try:
            self.initialize()
            with self._lock:
                return StorageResult.ok(operation())
        except (NotFoundError, ConflictError) as e:
            logger.debug("Storage %s/%s: %s", self.kind, self.namespace, e)
            return StorageResult.fail(e)
        except OSError as e:
            logger.error("Storage %s/%s unavailable: %s", self.kind, self.namespace, e)
            error = StorageUnavailableError(
                f"{self.kind} storage for {self.namespace} unavailable: {e}",
                namespace=self.namespace,
            )
            error.__cause__ = e
            return StorageResult.fail(error)
        except Exception as e:
            logger.error("Storage %s/%s operation failed: %s", self.kind, self.namespace, e)
            return StorageResult.fail(e)

    def _missing(self, id: str) -> NotFoundError:
        return NotFoundError(f"No record with id {id!r} in {self.namespace}", id=id)

    def _duplicate(self, id: str) -> ConflictError:
        return ConflictError(f"Record {id!r} already exists in {self.namespace}", id=id)
