"""
Thread-safe run statistics for the ingest worker.
"""
import uuid
from threading import Lock
from typing import Any

from interfaces import MetricsReader


# ============================================================================
# THREAD-SAFE STATS
# ============================================================================

class ThreadSafeStats(MetricsReader):
    def __init__(self):
        self._lock = Lock()
        self._stats: dict[str, Any] = {
            "run_id": uuid.uuid4().hex,
            "files_succeeded": 0,
            "files_duplicate": 0,
            "files_unrouted": 0,
            "files_dead_lettered": 0,
            "files_retry_scheduled": 0,
            "files_not_stable": 0,
            "failed_files": [],
        }

    def increment(self, key: str, amount: int = 1) -> None:
        with self._lock:
            self._stats[key] = self._stats.get(key, 0) + amount

    def append_failed(self, filename: str) -> None:
        with self._lock:
            self._stats["failed_files"].append(filename)

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            snapshot = self._stats.copy()
            snapshot["failed_files"] = list(self._stats["failed_files"])
            return snapshot

    def observe_timing(self, key: str, value: float) -> None:
        with self._lock:
            count_key = f"{key}_count"
            sum_key = f"{key}_sum"
            max_key = f"{key}_max"
            self._stats[count_key] = self._stats.get(count_key, 0) + 1
            self._stats[sum_key] = self._stats.get(sum_key, 0.0) + float(value)
            current_max = self._stats.get(max_key, 0.0)
            if float(value) > float(current_max):
                self._stats[max_key] = float(value)
