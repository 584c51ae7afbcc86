"""Asynchronous structured logging for cascade runs."""

from __future__ import annotations

import json
import queue
import threading
import time
import traceback
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import Stats, Status


class RunLogger:
    """Records structured events in memory and, optionally, as JSON lines on disk."""

    def __init__(self, log_path: Optional[Path] = None, summary_path: Optional[Path] = None) -> None:
        self._log_path = log_path
        self._summary_path = summary_path or (log_path.with_suffix(".md") if log_path else None)
        self._lock = threading.Lock()
        self._events: List[Dict[str, Any]] = []
        self._unit_records: Dict[str, Dict[str, Any]] = {}
        self._closed = False
        self._queue: "queue.Queue[Optional[Dict[str, Any]]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    @property
    def log_path(self) -> Optional[Path]:
        return self._log_path

    @property
    def is_writing(self) -> bool:
        """True while the JSONL writer thread is running."""
        thread = self._thread
        return thread is not None and thread.is_alive()

    def _start_writer(self, log_path: Path) -> None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        self._thread = threading.Thread(target=self._worker, args=(log_path,), name="cascade-log-writer", daemon=True)
        self._thread.start()

    def _worker(self, log_path: Path) -> None:
        with log_path.open("a", encoding="utf8") as fh:
            while True:
                item = self._queue.get()
                if item is None:
                    break
                json.dump(item, fh, sort_keys=True, default=str)
                fh.write("\n")
                fh.flush()

    def log_event(self, event: Dict[str, Any]) -> None:
        payload = {"timestamp": time.time(), **event}
        with self._lock:
            self._events.append(payload)
            if self._log_path is None or self._closed:
                return
            if self._thread is None:
                self._start_writer(self._log_path)
            self._queue.put(payload)

    def events(self, event_type: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            events = list(self._events)
        if event_type is None:
            return events
        return [event for event in events if event.get("type") == event_type]

    def info(self, source: str, message: str) -> None:
        self.log_event({"type": "info", "source": source, "message": message})

    def warning(self, source: str, message: str, exc: Optional[BaseException] = None) -> None:
        payload: Dict[str, Any] = {"type": "warning", "source": source, "message": message}
        payload.update(_describe(exc))
        self.log_event(payload)

    def log_unit_start(self, unit_name: str) -> None:
        self.log_event({"type": "unit_start", "unit": unit_name})

    def log_unit_skip(self, unit_name: str) -> None:
        self.log_event({"type": "unit_skip", "unit": unit_name})

    def log_unit_failed(self, unit_name: str, exc: BaseException) -> None:
        self.log_event({"type": "unit_failed", "unit": unit_name, **_describe(exc)})

    def log_unit_stop(self, unit_name: str) -> None:
        self.log_event({"type": "unit_stop", "unit": unit_name})

    def log_unit_end(self, stats: Stats) -> None:
        payload = {"type": "unit_end", "unit": stats.name, "stats": stats.to_dict()}
        with self._lock:
            self._unit_records[stats.name] = {
                "unit": stats.name,
                "status": stats.status,
                "duration_ns": stats.duration_ns or 0,
            }
        self.log_event(payload)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self._thread is not None:
            self._queue.put(None)
            self._thread.join(timeout=2)
        self._write_summary()

    def _write_summary(self) -> None:
        if self._summary_path is None:
            return
        with self._lock:
            records = list(self._unit_records.values())
        if not records:
            return
        total_duration = sum(record["duration_ns"] for record in records)
        lines = ["# Cascade Run Summary", "", f"- Total units: {len(records)}"]
        lines.append(f"- Total unit time (ms): {total_duration / 1e6:.2f}")
        for status in (Status.SUCCESSFUL, Status.SKIPPED, Status.FAILED, Status.STOPPED):
            count = sum(1 for record in records if record["status"] is status)
            lines.append(f"- {status.value.capitalize()}: {count}")
        lines.append("")
        lines.append("| Unit | Status | Duration (ms) |")
        lines.append("| --- | --- | ---: |")
        for record in records:
            duration_ms = record["duration_ns"] / 1e6
            lines.append(f"| {record['unit']} | {record['status'].value} | {duration_ms:.2f} |")
        self._summary_path.parent.mkdir(parents=True, exist_ok=True)
        self._summary_path.write_text("\n".join(lines), encoding="utf8")


def _describe(exc: Optional[BaseException]) -> Dict[str, Any]:
    if exc is None:
        return {}
    return {
        "error_type": type(exc).__name__,
        "error": str(exc),
        "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    }


__all__ = ["RunLogger"]
