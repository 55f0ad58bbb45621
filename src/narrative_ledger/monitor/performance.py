"""Latency tracking against per-operation service-level thresholds."""

import logging
import time
from collections import defaultdict, deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# Thresholds in milliseconds
DEFAULT_THRESHOLDS: dict[str, float] = {
    "entry_creation": 180_000.0,
    "entry_update": 5_000.0,
    "search": 1_000.0,
    "reference_validation": 500.0,
    "similarity": 1_000.0,
    "ingestion": 5_000.0,
}

_SAMPLE_WINDOW = 500


@dataclass
class OperationStats:
    """Summary of recent samples for one operation."""

    count: int
    avg_ms: float
    max_ms: float
    min_ms: float
    breaches: int


@dataclass
class _Pending:
    operation: str
    started: float
    metadata: dict[str, Any] = field(default_factory=dict)


class PerformanceMonitor:
    """Times operations and warns when one exceeds its threshold."""

    def __init__(self, thresholds: dict[str, float] | None = None, window: int = _SAMPLE_WINDOW):
        """Initialize with optional threshold overrides and the per-operation sample window."""
        self._thresholds = dict(DEFAULT_THRESHOLDS)
        if thresholds:
            self._thresholds.update(thresholds)
        self._samples: dict[str, deque[float]] = defaultdict(lambda: deque(maxlen=window))
        self._breaches: dict[str, int] = defaultdict(int)
        self._pending: dict[str, _Pending] = {}

    def threshold(self, operation: str) -> float | None:
        return self._thresholds.get(operation)

    def set_threshold(self, operation: str, threshold_ms: float) -> None:
        """Override the threshold for one operation."""
        self._thresholds[operation] = threshold_ms

    def record(self, operation: str, duration_ms: float, **metadata: Any) -> bool:
        """Record a sample. Returns True if it breached the operation's threshold."""
        self._samples[operation].append(duration_ms)
        threshold = self._thresholds.get(operation)
        if threshold is not None and duration_ms > threshold:
            self._breaches[operation] += 1
            logger.warning(
                "Performance threshold exceeded for %s: %.2fms (threshold: %.0fms) %s",
                operation,
                duration_ms,
                threshold,
                metadata or "",
            )
            return True
        logger.debug("%s took %.2fms", operation, duration_ms)
        return False

    @asynccontextmanager
    async def track(self, operation: str, **metadata: Any) -> AsyncIterator[None]:
        """Time the enclosed block. Failed operations are recorded too."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.record(operation, (time.perf_counter() - started) * 1000.0, **metadata)

    def start(self, op_id: str, operation: str, **metadata: Any) -> None:
        """Begin an explicitly paired measurement."""
        self._pending[op_id] = _Pending(operation, time.perf_counter(), metadata)

    def end(self, op_id: str) -> float | None:
        """Finish a measurement started with ``start``. Returns the duration, or None."""
        pending = self._pending.pop(op_id, None)
        if pending is None:
            logger.warning("Performance metric not found: %s", op_id)
            return None
        duration_ms = (time.perf_counter() - pending.started) * 1000.0
        self.record(pending.operation, duration_ms, **pending.metadata)
        return duration_ms

    def stats(self, operation: str) -> OperationStats | None:
        """Summary over the sample window, or None if nothing was recorded."""
        samples = self._samples.get(operation)
        if not samples:
            return None
        return OperationStats(
            count=len(samples),
            avg_ms=sum(samples) / len(samples),
            max_ms=max(samples),
            min_ms=min(samples),
            breaches=self._breaches[operation],
        )
