# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Low-cardinality Prometheus metrics for lease operations.

Labels are limited to the operation and its outcome; keys and node ids are
never used as labels. One default instance is registered per process; pass a
private CollectorRegistry to create isolated instances.
"""

import threading
from dataclasses import dataclass
from typing import Any

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

__all__ = ["LockMetrics", "default_metrics"]

# op: lock | unlock | inspect
# outcome: acquired | denied | released | not_owner | error | deadline | cancelled | read
OUTCOMES = frozenset({"acquired", "denied", "released", "not_owner", "error", "deadline", "cancelled", "read"})


@dataclass
class LockMetrics:
    operations_total: Any
    store_latency_seconds: Any

    @classmethod
    def create(cls, registry: CollectorRegistry | None = None) -> LockMetrics:
        reg = registry or REGISTRY
        operations_total = Counter(
            "leasekit_lock_operations_total",
            "Lease operations by result",
            ["op", "outcome"],
            registry=reg,
        )
        store_latency_seconds = Histogram(
            "leasekit_store_latency_seconds",
            "Round-trip time of lease store calls",
            ["op"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
            registry=reg,
        )
        return cls(operations_total=operations_total, store_latency_seconds=store_latency_seconds)

    def record(self, op: str, outcome: str, elapsed: float | None = None) -> None:
        if outcome not in OUTCOMES:
            raise ValueError(f"unknown outcome label: {outcome!r}")
        self.operations_total.labels(op=op, outcome=outcome).inc()
        if elapsed is not None:
            self.store_latency_seconds.labels(op=op).observe(elapsed)


_default: LockMetrics | None = None
_default_lock = threading.Lock()


def default_metrics() -> LockMetrics:
    """Process-wide metrics on the global registry, created on first use."""
    global _default
    with _default_lock:
        if _default is None:
            _default = LockMetrics.create()
        return _default
