from __future__ import annotations

import time

from backend.metrics import (
    metrics_snapshot,
    record_cache_access,
    record_error,
    record_events,
    record_webhook,
    reset_metrics_for_tests,
)


def test_metrics_snapshot_counts_and_rates():
    reset_metrics_for_tests()
    record_cache_access(True)
    record_cache_access(True)
    record_cache_access(False)
    record_events(3)
    record_events(-2)  # ignored
    record_webhook()
    record_error(time.time() - 4000)  # pruned from 1h window
    record_error(time.time())

    snap = metrics_snapshot()
    assert snap["cache_hit_rate"] == 0.6667
    assert snap["events_recorded"] == 3
    assert snap["webhooks_processed"] == 1
    assert snap["errors_last_hour"] == 1


def test_empty_snapshot():
    reset_metrics_for_tests()
    assert metrics_snapshot() == {
        "events_recorded": 0,
        "webhooks_processed": 0,
        "cache_hit_rate": 0.0,
        "errors_last_hour": 0,
    }
