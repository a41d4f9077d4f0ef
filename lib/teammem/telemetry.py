"""In-process metrics for storage, conflict resolution and sync."""
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


@dataclass
class MetricSnapshot:
    """Point-in-time snapshot of metrics."""
    timestamp: datetime
    counters: Dict[str, int]
    histograms: Dict[str, list]


class SimpleMetrics:
    """Thread-safe counters and bounded histograms."""

    MAX_SAMPLES = 1000

    def __init__(self):
        self._counters: Dict[str, int] = {}
        self._histograms: Dict[str, list] = {}
        self._lock = threading.Lock()

    def _make_key(self, name: str, labels: Optional[Dict[str, str]] = None) -> str:
        if not labels:
            return name
        label_str = ','.join(f'{k}={v}' for k, v in sorted(labels.items()))
        return f'{name}{{{label_str}}}'

    def increment(self, name: str, value: int = 1, labels: Optional[Dict[str, str]] = None):
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value

    def record(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        key = self._make_key(name, labels)
        with self._lock:
            samples = self._histograms.setdefault(key, [])
            samples.append(value)
            if len(samples) > self.MAX_SAMPLES:
                del samples[:-self.MAX_SAMPLES]

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> int:
        with self._lock:
            return self._counters.get(self._make_key(name, labels), 0)

    def get_histogram_stats(self, name: str, labels: Optional[Dict[str, str]] = None) -> Dict[str, float]:
        with self._lock:
            values = sorted(self._histograms.get(self._make_key(name, labels), []))
        if not values:
            return {'count': 0, 'min': 0, 'max': 0, 'avg': 0, 'p50': 0, 'p95': 0}

        count = len(values)
        return {
            'count': count,
            'min': values[0],
            'max': values[-1],
            'avg': sum(values) / count,
            'p50': values[int(count * 0.5)],
            'p95': values[int(count * 0.95)] if count > 20 else values[-1],
        }

    def snapshot(self) -> MetricSnapshot:
        with self._lock:
            return MetricSnapshot(
                timestamp=datetime.now(timezone.utc),
                counters=dict(self._counters),
                histograms={k: list(v) for k, v in self._histograms.items()},
            )

    def reset(self):
        with self._lock:
            self._counters.clear()
            self._histograms.clear()


class TeamMemoryMetrics:
    """Named metrics for the team memory store."""

    STORAGE_WRITES = 'teammem.storage.writes'
    STORAGE_READS = 'teammem.storage.reads'
    STORAGE_ERRORS = 'teammem.storage.errors'
    STORAGE_FALLBACKS = 'teammem.storage.fallbacks'
    STORAGE_LATENCY = 'teammem.storage.latency_ms'
    REPLICATION_FAILURES = 'teammem.storage.replication_failures'

    CONFLICTS_OPENED = 'teammem.conflicts.opened'
    CONFLICTS_RESOLVED = 'teammem.conflicts.resolved'
    MEMORIES_CONSOLIDATED = 'teammem.conflicts.consolidated'

    SYNC_RUNS = 'teammem.sync.runs'
    SYNC_FAILURES = 'teammem.sync.failures'
    SYNC_DURATION = 'teammem.sync.duration_ms'

    MEMORIES_SHARED = 'teammem.sharing.memories'

    def __init__(self, service_name: str = 'teammem'):
        self._service_name = service_name
        self._metrics = SimpleMetrics()

    def count(self, name: str, value: int = 1, **labels: str):
        self._metrics.increment(name, value, labels=labels or None)

    def get(self, name: str, **labels: str) -> int:
        return self._metrics.get_counter(name, labels=labels or None)

    def record_storage_op(self, operation: str, backend: str, success: bool, latency_ms: float):
        labels = {'operation': operation, 'backend': backend}
        if success:
            self._metrics.increment(
                self.STORAGE_WRITES if operation == 'store' else self.STORAGE_READS, labels=labels)
            self._metrics.record(self.STORAGE_LATENCY, latency_ms, labels=labels)
        else:
            self._metrics.increment(self.STORAGE_ERRORS, labels=labels)

    def record_sync(self, team_id: str, success: bool, duration_ms: float):
        self._metrics.increment(self.SYNC_RUNS, labels={'success': str(success).lower()})
        if not success:
            self._metrics.increment(self.SYNC_FAILURES, labels={'team_id': team_id})
        self._metrics.record(self.SYNC_DURATION, duration_ms)

    @contextmanager
    def measure(self, operation: str, backend: str):
        """Context manager recording latency and outcome of a backend call."""
        start = time.time()
        success = True
        try:
            yield
        except Exception:
            success = False
            raise
        finally:
            self.record_storage_op(operation, backend, success, (time.time() - start) * 1000)

    def get_summary(self) -> Dict[str, Any]:
        snapshot = self._metrics.snapshot()
        return {
            'timestamp': snapshot.timestamp.isoformat(),
            'service': self._service_name,
            'counters': snapshot.counters,
            'histograms': {
                key: len(samples) for key, samples in snapshot.histograms.items()
            },
        }

    def reset(self):
        self._metrics.reset()
