from __future__ import annotations

import threading
from collections import defaultdict

from core.logging_utils import log_structured

METRIC_DISPATCH_SENT = "dispatch.sent"
METRIC_DISPATCH_FAILED = "dispatch.failed"
METRIC_DISPATCH_REJECTED = "dispatch.rejected"
METRIC_AUDIT_FAILED = "audit.failed"
METRIC_HANDLES_EXPIRED = "sweep.handles_expired"
METRIC_CONSENTS_EXPIRED = "sweep.consents_expired"
METRIC_PARTITION_FAILED = "sweep.partition_failed"
METRIC_UNEXPECTED_EXCEPTION = "runtime.unexpected_exception"


class _InMemoryCounters:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = defaultdict(int)

    def increment(self, metric: str, value: int = 1) -> int:
        if value < 0:
            raise ValueError("counter increments must be non-negative")
        with self._lock:
            self._counters[metric] += value
            return self._counters[metric]

    def value(self, metric: str) -> int:
        with self._lock:
            return self._counters.get(metric, 0)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()


COUNTERS = _InMemoryCounters()


def increment_metric(
    metric: str,
    value: int = 1,
    *,
    tenant_id: str | None = None,
    reason: str | None = None,
) -> int:
    current = COUNTERS.increment(metric, value)
    log_structured(
        "metric.increment",
        metric=metric,
        value=current,
        tenant_id=tenant_id,
        reason=reason,
    )
    return current


def unexpected_exception_metric(error_class: str, *, request_id: str | None = None) -> int:
    base = COUNTERS.increment(METRIC_UNEXPECTED_EXCEPTION)
    COUNTERS.increment(f"{METRIC_UNEXPECTED_EXCEPTION}.{error_class}")
    log_structured("metric.increment", metric=METRIC_UNEXPECTED_EXCEPTION, value=base, request_id=request_id, reason=error_class)
    return base
