"""
Security monitor — records, queries, aggregates and alerts on security events.

Events land in three places:
  - a bounded in-memory ring buffer (oldest dropped past max_events)
  - the ``security`` storage namespace (best-effort; failures are logged)
  - for high/critical severities, a JSON line in
    ``<log_dir>/security-YYYY-MM-DD.log``

log_event() is synchronous and never waits on alert delivery. Dispatch is
scheduled on the running event loop when called from async code, otherwise on
a short-lived daemon thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections import deque
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from keyward.cache.base import CacheAdapter
from keyward.monitor.alerts import AlertChannel, AlertDispatcher
from keyward.monitor.models import (
    EventQuery,
    SecurityEvent,
    SecurityEventCreate,
    SecurityStats,
    Severity,
)
from keyward.storage.base import QueryOptions, StorageAdapter

logger = logging.getLogger(__name__)

STATS_CACHE_KEY = "security:stats"
SEVERE = (Severity.HIGH, Severity.CRITICAL)


class SecurityMonitor:
    def __init__(
        self,
        storage: StorageAdapter | None = None,
        cache: CacheAdapter | None = None,
        log_dir: Path | str | None = None,
        max_events: int = 1000,
        stats_ttl: int = 300,
        alerts_enabled: bool = False,
        dispatcher: AlertDispatcher | None = None,
    ):
        self.storage = storage
        self.cache = cache
        self.log_dir = Path(log_dir) if log_dir else None
        self.stats_ttl = stats_ttl
        self.alerts_enabled = alerts_enabled
        self.dispatcher = dispatcher or AlertDispatcher()
        self._events: deque[SecurityEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()
        self._log_lock = threading.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._threads: set[threading.Thread] = set()

    # ── Lifecycle ────────────────────────────────────────────────────

    def initialize(self) -> None:
        if self.log_dir:
            try:
                self.log_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error("Cannot create security log dir %s: %s", self.log_dir, e)
        if self.storage:
            self.storage.initialize()
        logger.info(
            "Security monitor ready (alerts=%s, channels=%d)",
            self.alerts_enabled,
            len(self.dispatcher.channels),
        )

    def add_channel(self, channel: AlertChannel) -> None:
        self.dispatcher.add_channel(channel)

    async def drain(self) -> None:
        """Wait for alert deliveries scheduled on the current loop."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self, timeout: float = 5.0) -> None:
        for thread in list(self._threads):
            thread.join(timeout)

    # ── Recording ────────────────────────────────────────────────────

    def log_event(self, request: SecurityEventCreate | dict[str, Any]) -> SecurityEvent:
        """Record a security event and kick off alerting. Never raises for I/O failures."""
        if isinstance(request, dict):
            request = SecurityEventCreate(**request)

        event = SecurityEvent(
            type=request.type,
            ip=request.ip,
            path=request.path,
            severity=request.severity,
            details=dict(request.details),
        )

        with self._lock:
            self._events.append(event)

        logger.warning(
            "Security event %s severity=%s ip=%s path=%s",
            event.type,
            event.severity,
            event.ip,
            event.path,
        )

        if event.severity in SEVERE:
            self._append_severe(event)

        if self.storage:
            result = self.storage.create(event.id, event.to_dict())
            if not result.success:
                logger.warning("Failed to persist security event %s: %s", event.id, result.error)

        if self.alerts_enabled and self.dispatcher.channels:
            self._schedule_alerts(event)

        return event

    def _append_severe(self, event: SecurityEvent) -> None:
        if not self.log_dir:
            return
        path = self.log_dir / f"security-{event.timestamp.astimezone(UTC):%Y-%m-%d}.log"
        try:
            with self._log_lock:
                self.log_dir.mkdir(parents=True, exist_ok=True)
                with path.open("a", encoding="utf-8") as fh:
                    fh.write(json.dumps(event.to_dict(), default=str) + "\n")
        except OSError as e:
            logger.error("Failed to write security log %s: %s", path, e)

    def _schedule_alerts(self, event: SecurityEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(self._dispatch(event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return

        thread = threading.Thread(
            target=asyncio.run,
            args=(self._dispatch(event),),
            name=f"keyward-alert-{event.id[:8]}",
            daemon=True,
        )
        self._threads.add(thread)
        thread.start()

    async def _dispatch(self, event: SecurityEvent) -> None:
        try:
            results = await self.dispatcher.dispatch(event)
            failed = [r.channel_name for r in results if not r.success]
            if failed:
                logger.error(
                    "Alert delivery failed for event %s on: %s", event.id, ", ".join(failed)
                )
        except Exception as e:
            logger.error("Alert dispatch for event %s failed: %s", event.id, e)
        finally:
            self._threads.discard(threading.current_thread())

    # ── Queries ──────────────────────────────────────────────────────

    def get_events(self, query: EventQuery | None = None) -> list[SecurityEvent]:
        """Newest first. Reads storage when available, else the in-memory buffer."""
        query = query or EventQuery()

        events: list[SecurityEvent] | None = None
        if self.storage:
            criteria: dict[str, Any] = {}
            if query.type:
                criteria["type"] = str(query.type)
            if query.severity:
                criteria["severity"] = str(query.severity)
            if query.ip:
                criteria["ip"] = query.ip
            result = self.storage.get_many(QueryOptions(filter=criteria))
            if result.success:
                events = [SecurityEvent.from_dict(r) for r in result.data]
            else:
                logger.warning("Event query fell back to memory: %s", result.error)

        if events is None:
            with self._lock:
                events = list(self._events)

        matched = sorted(
            (e for e in events if query.matches(e)), key=lambda e: e.timestamp, reverse=True
        )
        start = max(query.offset, 0)
        if query.limit is None:
            return matched[start:]
        return matched[start : start + query.limit]

    def get_stats(self) -> SecurityStats:
        """Aggregate counts over all events. Cached for ``stats_ttl`` seconds."""
        if self.cache:
            cached = self.cache.get(STATS_CACHE_KEY)
            if cached.success and cached.hit:
                return SecurityStats.from_dict(cached.data)

        events: list[SecurityEvent] | None = None
        if self.storage:
            result = self.storage.get_many()
            if result.success:
                events = [SecurityEvent.from_dict(r) for r in result.data]
            else:
                logger.warning("Stats fell back to memory: %s", result.error)
        if events is None:
            with self._lock:
                events = list(self._events)

        stats = SecurityStats()
        for event in events:
            stats.add(event)

        if self.cache:
            self.cache.set(STATS_CACHE_KEY, stats.to_dict(), ttl=self.stats_ttl)
        return stats

    def detect_anomalies(
        self,
        ip: str,
        path: str,
        window_ms: int = 60_000,
        threshold: int = 10,
    ) -> bool:
        """True when ``ip`` hit ``path`` more than ``threshold`` times in the window."""
        now = datetime.now(UTC)
        recent = self.get_events(
            EventQuery(ip=ip, start=now - timedelta(milliseconds=window_ms), end=now, limit=None)
        )
        return sum(1 for e in recent if e.path == path) > threshold
