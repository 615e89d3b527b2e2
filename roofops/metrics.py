"""
Lightweight runtime metrics for health/observability.

Uses in-process counters so it works without extra dependencies.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Deque, Dict


class _RuntimeMetrics:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pipeline_transitions = 0
        self._approvals_processed = 0
        self._clock_events = 0
        self._gps_accepted = 0
        self._gps_throttled = 0
        self._kpi_cache_hits = 0
        self._kpi_cache_misses = 0
        self._error_timestamps: Deque[float] = deque()

    def record_pipeline_transition(self) -> None:
        with self._lock:
            self._pipeline_transitions += 1

    def record_approval_processed(self) -> None:
        with self._lock:
            self._approvals_processed += 1

    def record_clock_event(self) -> None:
        with self._lock:
            self._clock_events += 1

    def record_gps_ping(self, accepted: bool) -> None:
        with self._lock:
            if accepted:
                self._gps_accepted += 1
            else:
                self._gps_throttled += 1

    def record_kpi_cache_access(self, hit: bool) -> None:
        with self._lock:
            if hit:
                self._kpi_cache_hits += 1
            else:
                self._kpi_cache_misses += 1

    def record_error(self, ts: float | None = None) -> None:
        now = ts if ts is not None else time.time()
        with self._lock:
            self._error_timestamps.append(now)
            self._prune_locked(now)

    def snapshot(self) -> Dict[str, float | int]:
        now = time.time()
        with self._lock:
            self._prune_locked(now)
            total = self._kpi_cache_hits + self._kpi_cache_misses
            hit_rate = (self._kpi_cache_hits / total) if total > 0 else 0.0
            return {
                "pipeline_transitions": self._pipeline_transitions,
                "approvals_processed": self._approvals_processed,
                "clock_events": self._clock_events,
                "gps_pings_accepted": self._gps_accepted,
                "gps_pings_throttled": self._gps_throttled,
                "kpi_cache_hit_rate": round(hit_rate, 4),
                "errors_last_hour": len(self._error_timestamps),
            }

    def reset_for_tests(self) -> None:
        with self._lock:
            self._pipeline_transitions = 0
            self._approvals_processed = 0
            self._clock_events = 0
            self._gps_accepted = 0
            self._gps_throttled = 0
            self._kpi_cache_hits = 0
            self._kpi_cache_misses = 0
            self._error_timestamps.clear()

    def _prune_locked(self, now: float) -> None:
        cutoff = now - 3600.0
        while self._error_timestamps and self._error_timestamps[0] < cutoff:
            self._error_timestamps.popleft()


_METRICS = _RuntimeMetrics()


def record_pipeline_transition() -> None:
    _METRICS.record_pipeline_transition()


def record_approval_processed() -> None:
    _METRICS.record_approval_processed()


def record_clock_event() -> None:
    _METRICS.record_clock_event()


def record_gps_ping(accepted: bool) -> None:
    _METRICS.record_gps_ping(accepted)


def record_kpi_cache_access(hit: bool) -> None:
    _METRICS.record_kpi_cache_access(hit)


def record_error(ts: float | None = None) -> None:
    _METRICS.record_error(ts)


def metrics_snapshot() -> Dict[str, float | int]:
    return _METRICS.snapshot()


def reset_metrics_for_tests() -> None:
    _METRICS.reset_for_tests()
