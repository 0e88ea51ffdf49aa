"""Outreach counters.

Lightweight in-process counters for send outcomes and audit gaps
(a send that succeeded but whose log row could not be written).

Usage:
    from benefit_outreach.core.metrics import get_metrics, SEND_OK_LOG_FAILED

    metrics = get_metrics()
    metrics.increment(SEND_OK_LOG_FAILED)

    print(metrics.snapshot())
"""

from __future__ import annotations

import threading
from collections import defaultdict
from datetime import datetime
from typing import Any

from benefit_outreach.core.clock import utc_now

SEND_SUCCEEDED = "outreach_send_succeeded"
SEND_FAILED = "outreach_send_failed"
SEND_SIMULATED = "outreach_send_simulated"
LOG_WRITE_FAILED = "outreach_log_write_failed"
SEND_OK_LOG_FAILED = "outreach_send_ok_log_failed"
SEQUENCE_CLAIM_CONFLICTS = "sequence_claim_conflicts"
CACHE_HITS = "credential_cache_hits"
CACHE_MISSES = "credential_cache_misses"


class OutreachMetrics:
    """Thread-safe named counters."""

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()
        self._started_at: datetime = utc_now()

    def increment(self, name: str, amount: int = 1) -> None:
        """Increase a counter."""
        with self._lock:
            self._counters[name] += amount

    def get(self, name: str) -> int:
        """Current value of a counter (0 if never incremented)."""
        with self._lock:
            return self._counters.get(name, 0)

    def snapshot(self) -> dict[str, Any]:
        """Copy of all counters for reporting."""
        with self._lock:
            return {
                "since": self._started_at.isoformat(),
                "counters": dict(self._counters),
            }

    def reset(self) -> None:
        """Zero all counters."""
        with self._lock:
            self._counters.clear()
            self._started_at = utc_now()


# Global metrics instance
_metrics: OutreachMetrics | None = None
_metrics_lock = threading.Lock()


def get_metrics() -> OutreachMetrics:
    """Get the process-wide metrics instance."""
    global _metrics
    with _metrics_lock:
        if _metrics is None:
            _metrics = OutreachMetrics()
        return _metrics


def reset_metrics() -> None:
    """Reset global metrics."""
    global _metrics
    with _metrics_lock:
        if _metrics is not None:
            _metrics.reset()
