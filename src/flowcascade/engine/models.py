"""Run-state bookkeeping shared by units and cascades."""

from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Any, Dict, List, Optional


class Status(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SKIPPED = "skipped"
    SUCCESSFUL = "successful"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def finished(self) -> bool:
        return self in _FINISHED


_FINISHED = frozenset({Status.SKIPPED, Status.SUCCESSFUL, Status.FAILED, Status.STOPPED})


class Stats:
    """Thread-safe status record with timing.

    ``pending -> running`` is the only forward transition; any state may move
    to a finished state, after which the record no longer changes except for
    ``force_failed``.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._status = Status.PENDING
        self._throwable: Optional[BaseException] = None
        self._start_ns: Optional[int] = None
        self._finish_ns: Optional[int] = None
        self._cleaned_up = False

    @property
    def status(self) -> Status:
        with self._lock:
            return self._status

    @property
    def throwable(self) -> Optional[BaseException]:
        with self._lock:
            return self._throwable

    @property
    def duration_ns(self) -> Optional[int]:
        with self._lock:
            if self._start_ns is None:
                return None
            end = self._finish_ns if self._finish_ns is not None else time.perf_counter_ns()
            return end - self._start_ns

    def is_finished(self) -> bool:
        return self.status.finished

    def is_successful(self) -> bool:
        return self.status in (Status.SUCCESSFUL, Status.SKIPPED)

    def mark_pending(self) -> None:
        with self._lock:
            if self._status.finished:
                return
            self._status = Status.PENDING

    def mark_running(self) -> bool:
        with self._lock:
            if self._status is not Status.PENDING:
                return False
            self._status = Status.RUNNING
            self._start_ns = time.perf_counter_ns()
            return True

    def mark_successful(self) -> bool:
        return self._finish(Status.SUCCESSFUL)

    def mark_skipped(self) -> bool:
        return self._finish(Status.SKIPPED)

    def mark_stopped(self) -> bool:
        return self._finish(Status.STOPPED)

    def mark_failed(self, throwable: Optional[BaseException] = None) -> bool:
        return self._finish(Status.FAILED, throwable)

    def force_failed(self, throwable: BaseException) -> None:
        """Correct a default success once a failure is discovered."""
        with self._lock:
            if self._status is Status.SUCCESSFUL:
                self._status = Status.FAILED
                self._throwable = throwable

    def _finish(self, status: Status, throwable: Optional[BaseException] = None) -> bool:
        with self._lock:
            if self._status.finished:
                return False
            self._status = status
            self._throwable = throwable
            now = time.perf_counter_ns()
            if self._start_ns is None:
                self._start_ns = now
            self._finish_ns = now
            return True

    @property
    def cleaned_up(self) -> bool:
        with self._lock:
            return self._cleaned_up

    def cleanup(self) -> None:
        """Release resources held for this record. Safe to call repeatedly."""
        with self._lock:
            self._cleaned_up = True

    def to_dict(self) -> Dict[str, Any]:
        throwable = self.throwable
        return {
            "name": self.name,
            "status": self.status.value,
            "duration_ns": self.duration_ns,
            "error": None if throwable is None else f"{type(throwable).__name__}: {throwable}",
        }


class UnitStats(Stats):
    """Status of one unit."""


class CascadeStats(Stats):
    """Status of a whole cascade plus the stats of its units."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._children: Dict[str, UnitStats] = {}

    def add_unit_stats(self, stats: UnitStats) -> None:
        with self._lock:
            self._children[stats.name] = stats

    def unit_stats(self) -> List[UnitStats]:
        with self._lock:
            return list(self._children.values())

    def cleanup(self) -> None:
        super().cleanup()
        for child in self.unit_stats():
            child.cleanup()

    def counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in Status}
        for child in self.unit_stats():
            counts[child.status.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["units"] = [child.to_dict() for child in self.unit_stats()]
        return payload


__all__ = ["CascadeStats", "Stats", "Status", "UnitStats"]
