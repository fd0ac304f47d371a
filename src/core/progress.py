"""
Batch progress tracking - shared, thread-safe map of batch id to live progress.

Entries exist only while a batch is running: inserted when a progress-reporting
batch starts and removed when it finishes, whatever the outcome.
"""

import threading
import time
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any, Dict, List, Optional


class DuplicateBatchError(ValueError):
    """Raised when a batch id is registered while another batch with that id is in flight."""
    pass


def compute_percentage(processed_count: int, total_count: int) -> int:
    """Integer floor of processed/total*100."""
    if total_count <= 0:
        return 0
    return (processed_count * 100) // total_count


def estimate_remaining(elapsed_seconds: float, processed_count: int, total_count: int) -> Optional[timedelta]:
    if processed_count <= 0 or total_count <= 0:
        return None
    remaining = max(total_count - processed_count, 0)
    return timedelta(seconds=elapsed_seconds / processed_count * remaining)


@dataclass
class BatchProgressInfo:
    batch_id: str
    processed_count: int = 0
    total_count: int = 0
    progress_percentage: int = 0
    status: str = ""
    estimated_time_remaining: Optional[timedelta] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "batch_id": self.batch_id,
            "processed_count": self.processed_count,
            "total_count": self.total_count,
            "progress_percentage": self.progress_percentage,
            "status": self.status,
        }
        if self.estimated_time_remaining is not None:
            data["estimated_time_remaining_seconds"] = self.estimated_time_remaining.total_seconds()
        return data


class ProgressTracker:
    """Concurrent store of in-flight batch progress.

    All methods take the internal lock, so batch executions and status
    queries can call them from any thread. Readers always get a copy.
    """

    def __init__(self):
        self._entries: Dict[str, BatchProgressInfo] = {}
        self._started_at: Dict[str, float] = {}
        self._lock = threading.Lock()

    def start(self, batch_id: str, total_count: int, status: str = "Starting batch") -> BatchProgressInfo:
        with self._lock:
            if batch_id in self._entries:
                raise DuplicateBatchError(f"Batch {batch_id} is already in progress")
            info = BatchProgressInfo(batch_id=batch_id, total_count=total_count, status=status)
            self._entries[batch_id] = info
            self._started_at[batch_id] = time.monotonic()
            return replace(info)

    def update(self, batch_id: str, processed_count: int, status: Optional[str] = None,
               total_count: Optional[int] = None) -> Optional[BatchProgressInfo]:
        """Record progress and return a snapshot, or None if the batch is not tracked."""
        with self._lock:
            info = self._entries.get(batch_id)
            if info is None:
                return None
            if total_count is not None:
                info.total_count = total_count
            elapsed = time.monotonic() - self._started_at[batch_id]
            info.processed_count = processed_count
            info.progress_percentage = compute_percentage(processed_count, info.total_count)
            info.estimated_time_remaining = estimate_remaining(elapsed, processed_count, info.total_count)
            if status is not None:
                info.status = status
            return replace(info)

    def get(self, batch_id: str) -> Optional[BatchProgressInfo]:
        with self._lock:
            info = self._entries.get(batch_id)
            return replace(info) if info is not None else None

    def remove(self, batch_id: str) -> bool:
        with self._lock:
            self._started_at.pop(batch_id, None)
            return self._entries.pop(batch_id, None) is not None

    def active_batches(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, batch_id: str) -> bool:
        with self._lock:
            return batch_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# Global tracker instance shared by batch services in this process
progress_tracker = ProgressTracker()
