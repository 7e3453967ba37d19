"""
Operation metrics for cl-channeldb

Counts calls, failures and time spent in each channel store operation.
Store methods are wrapped with @with_metrics("channels/<operation>"); the
decorator looks up the DbMetrics instance on the store (self.metrics) and
skips recording when it is None.
"""

import functools
import threading
import time
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict


@dataclass
class OperationStats:
    """Accumulated stats for one named operation."""
    calls: int = 0
    failures: int = 0
    total_seconds: float = 0.0
    last_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['avg_seconds'] = (self.total_seconds / self.calls) if self.calls else 0.0
        return result


class DbMetrics:
    """Thread-safe per-operation counters."""

    def __init__(self):
        self._lock = threading.Lock()
        self._stats: Dict[str, OperationStats] = {}

    def record(self, name: str, duration: float, success: bool) -> None:
        with self._lock:
            stats = self._stats.setdefault(name, OperationStats())
            stats.calls += 1
            if not success:
                stats.failures += 1
            stats.total_seconds += duration
            stats.last_seconds = duration

    def get(self, name: str) -> OperationStats:
        with self._lock:
            stats = self._stats.get(name, OperationStats())
            return OperationStats(**asdict(stats))

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {name: stats.to_dict() for name, stats in sorted(self._stats.items())}

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


def with_metrics(name: str) -> Callable:
    """
    Decorate a store method so each call is timed and counted under name.

    Exceptions are counted as failures and re-raised unchanged.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            metrics = getattr(self, 'metrics', None)
            if metrics is None:
                return func(self, *args, **kwargs)
            start = time.monotonic()
            try:
                result = func(self, *args, **kwargs)
            except Exception:
                metrics.record(name, time.monotonic() - start, success=False)
                raise
            metrics.record(name, time.monotonic() - start, success=True)
            return result
        return wrapper
    return decorator
