from __future__ import annotations

import time

from roofops import metrics


def test_counters_and_hit_rate():
    metrics.reset_metrics_for_tests()
    metrics.record_pipeline_transition()
    metrics.record_pipeline_transition()
    metrics.record_approval_processed()
    metrics.record_clock_event()
    metrics.record_gps_ping(accepted=True)
    metrics.record_gps_ping(accepted=False)
    metrics.record_kpi_cache_access(hit=True)
    metrics.record_kpi_cache_access(hit=False)
    metrics.record_kpi_cache_access(hit=False)
    metrics.record_kpi_cache_access(hit=True)

    snap = metrics.metrics_snapshot()
    assert snap["pipeline_transitions"] == 2
    assert snap["approvals_processed"] == 1
    assert snap["clock_events"] == 1
    assert snap["gps_pings_accepted"] == 1
    assert snap["gps_pings_throttled"] == 1
    assert snap["kpi_cache_hit_rate"] == 0.5


def test_errors_outside_window_are_pruned():
    metrics.reset_metrics_for_tests()
    metrics.record_error(ts=time.time() - 7200)
    metrics.record_error()
    assert metrics.metrics_snapshot()["errors_last_hour"] == 1
