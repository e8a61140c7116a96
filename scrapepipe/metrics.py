from __future__ import annotations

import time
from collections import deque
from dataclasses import asdict
from threading import Lock
from typing import Deque, Dict, List

from .models import FetchRecord, MetricsSnapshot


class MetricsCollector:
    """Thread-safe collector of per-request outcomes.

    Every job descended from the same configured job shares one collector,
    so the snapshot covers recursively spawned fetches as well."""

    def __init__(self, maxlen: int = 100000) -> None:
        self._lock = Lock()
        self._events: Deque[tuple[float, FetchRecord]] = deque(maxlen=maxlen)

    def record(self, record: FetchRecord) -> None:
        """Record a fetch outcome with the current timestamp."""
        with self._lock:
            self._events.append((time.time(), record))

    def snapshot(self) -> MetricsSnapshot:
        """Aggregate every recorded event."""
        with self._lock:
            events: List[FetchRecord] = [e for _, e in self._events]
        total = len(events)
        success_count = sum(1 for e in events if e.success)
        http_error_count = sum(1 for e in events if e.status_code is not None and not e.success)
        transport_error_count = sum(1 for e in events if e.status_code is None)
        avg_latency_ms = (sum(e.latency_ms for e in events) / total) if total else 0.0

        return MetricsSnapshot(
            total_requests=total,
            success_count=success_count,
            http_error_count=http_error_count,
            transport_error_count=transport_error_count,
            avg_latency_ms=avg_latency_ms,
            timestamp=time.time(),
        )

    def export_json(self) -> List[Dict]:
        """Export all recorded events as a list of dictionaries."""
        with self._lock:
            return [{"timestamp": ts, **asdict(e)} for ts, e in self._events]
