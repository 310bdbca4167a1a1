#!/usr/bin/env python3
"""
Instrumentation Layer for the Startup Chart Pipeline
====================================================
Lightweight, observational event tracing for a dataset load cycle. Every
loader tier attempt (READ for local/bundled files, NET for remote CSV
exports and tab probes, CALC for parsing) is recorded to an in-memory log
that can be flushed to CSV/Markdown when the cycle ends.

Usage:
    from instrumentation import EventLog, trace_event

    log = EventLog()
    with trace_event(log, "READ", "main: local JSON", dataset="main"):
        rows = read_local_rows(path)

    log.flush_all("logs/events")
"""

import csv
import inspect
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

COLUMNS = ["#", "Time", "Type", "Duration", "Dataset", "Operation",
           "Caller", "Status", "Details"]


class Event:
    """Single instrumentation event."""
    __slots__ = ("seq", "wall_time", "event_type", "duration_ms", "dataset",
                 "operation", "caller", "status", "details")

    def __init__(self, seq: int, wall_time: str, event_type: str,
                 duration_ms: float, dataset: str, operation: str,
                 caller: str, status: str, details: str):
        self.seq = seq
        self.wall_time = wall_time
        self.event_type = event_type
        self.duration_ms = duration_ms
        self.dataset = dataset
        self.operation = operation
        self.caller = caller
        self.status = status
        self.details = details

    def duration_human(self) -> str:
        ms = self.duration_ms
        if ms < 1000:
            return f"{ms:.0f} ms"
        return f"{ms:.0f} ms ({ms/1000:.1f}s)"

    def to_dict(self) -> dict:
        return {
            "#": self.seq,
            "Time": self.wall_time,
            "Type": self.event_type,
            "Duration": self.duration_human(),
            "Dataset": self.dataset,
            "Operation": self.operation,
            "Caller": self.caller,
            "Status": self.status,
            "Details": self.details,
        }


class EventLog:
    """In-memory event log that flushes to CSV/MD."""

    def __init__(self):
        self.events: list[Event] = []
        self._seq = 0

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def record(self, event_type: str, operation: str, duration_ms: float,
               status: str = "OK", details: str = "", dataset: str = "",
               caller: Optional[str] = None) -> Event:
        if caller is None:
            caller = _get_caller(skip=2)
        evt = Event(
            seq=self._next_seq(),
            wall_time=datetime.now().strftime("%H:%M:%S"),
            event_type=event_type,
            duration_ms=round(duration_ms, 1),
            dataset=dataset,
            operation=operation,
            caller=caller,
            status=status,
            details=details,
        )
        self.events.append(evt)
        return evt

    def for_dataset(self, dataset: str) -> list[Event]:
        return [e for e in self.events if e.dataset == dataset]

    def failures(self) -> list[Event]:
        return [e for e in self.events if e.status != "OK"]

    def flush_csv(self, path: str | Path) -> str:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", newline="", encoding="utf-8") as f:
            w = csv.DictWriter(f, fieldnames=COLUMNS)
            w.writeheader()
            for evt in self.events:
                w.writerow(evt.to_dict())
        return str(path)

    def flush_md(self, path: str | Path) -> str:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write("# Load Cycle Event Trace\n\n")
            f.write(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n\n")

            total_ms = sum(e.duration_ms for e in self.events)
            per_dataset: dict[str, int] = {}
            for e in self.events:
                key = e.dataset or "-"
                per_dataset[key] = per_dataset.get(key, 0) + 1
            f.write("## Summary\n\n")
            f.write(f"- Total events: {len(self.events)}\n")
            f.write(f"- Total traced time: {total_ms/1000:.1f}s\n")
            f.write("- Events per dataset: "
                    f"{', '.join(f'{k}={v}' for k, v in sorted(per_dataset.items()))}\n")
            f.write(f"- Failures: {len(self.failures())}\n\n")

            f.write("## Events\n\n")
            f.write("| " + " | ".join(COLUMNS) + " |\n")
            f.write("| " + " | ".join("---" for _ in COLUMNS) + " |\n")
            for evt in self.events:
                d = evt.to_dict()
                row = " | ".join(str(d.get(c, "")).replace("|", "\\|")
                                 for c in COLUMNS)
                f.write(f"| {row} |\n")
        return str(path)

    def flush_all(self, report_dir: str | Path):
        d = Path(report_dir)
        d.mkdir(parents=True, exist_ok=True)
        self.flush_csv(d / "events.csv")
        self.flush_md(d / "events.md")


def _get_caller(skip: int = 2) -> str:
    """Get caller info as file:function:line."""
    try:
        frame = inspect.stack()[skip]
        return f"{Path(frame.filename).name}:{frame.function}:{frame.lineno}"
    except (IndexError, AttributeError):
        return "unknown"


@contextmanager
def trace_event(log: Optional[EventLog], event_type: str, operation: str,
                details: str = "", dataset: str = "",
                caller: Optional[str] = None):
    """Context manager that records a timed event to the log.

    A ``None`` log makes this a no-op so library code can trace
    unconditionally. Exceptions are recorded as FAIL and re-raised.
    """
    if log is None:
        yield
        return
    if caller is None:
        # _get_caller -> trace_event -> contextmanager __enter__ -> caller
        caller = _get_caller(skip=3)
    t0 = time.monotonic()
    status = "OK"
    try:
        yield
    except Exception as exc:
        status = "FAIL"
        err = f"ERROR: {type(exc).__name__}: {exc}"
        details = f"{details}; {err}" if details else err
        raise
    finally:
        elapsed_ms = (time.monotonic() - t0) * 1000
        log.record(event_type, operation, elapsed_ms, status=status,
                   details=details, dataset=dataset, caller=caller)


def trace_net_call(log: Optional[EventLog], operation: str, url: str = "",
                   status_code: int = 0, retries: int = 0, nbytes: int = 0,
                   duration_ms: float = 0, status: str = "OK",
                   dataset: str = "", caller: Optional[str] = None):
    """Record a network call event."""
    if log is None:
        return
    parts = []
    if url:
        parts.append(f"url={url}")
    if status_code:
        parts.append(f"status={status_code}")
    if retries:
        parts.append(f"retries={retries}")
    if nbytes:
        parts.append(f"bytes={nbytes}")
    if caller is None:
        caller = _get_caller(skip=2)
    log.record("NET", operation, duration_ms, status=status,
               details="; ".join(parts), dataset=dataset, caller=caller)
