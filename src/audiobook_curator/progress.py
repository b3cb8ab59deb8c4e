"""Progress reporting sinks.

The core reports (current, total, label) after each group or file finishes.
Reporting is fire-and-forget: report_progress never lets a sink failure
reach the caller.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

log = logger.bind(stage="progress")


class ProgressReporter(Protocol):
    def report(self, current: int, total: int, label: str) -> None: ...


class NullReporter:
    """Discards every update."""

    def report(self, current: int, total: int, label: str) -> None:
        return None


@dataclass
class ProgressState:
    current: int = 0
    total: int = 0
    label: str = ""


class LoggingReporter:
    """Logs each update and remembers the latest one."""

    def __init__(self, every: int = 1) -> None:
        self.every = max(1, every)
        self.state = ProgressState()
        self._lock = threading.Lock()

    def report(self, current: int, total: int, label: str) -> None:
        with self._lock:
            self.state = ProgressState(current=current, total=total, label=label)
        if current % self.every == 0 or current == total:
            log.info(f"[{current}/{total}] {label}")


def report_progress(reporter: ProgressReporter | None, current: int, total: int, label: str) -> None:
    """Send one update to the sink, ignoring any failure in the sink itself."""
    if reporter is None:
        return
    try:
        reporter.report(current, total, label)
    except Exception as e:
        log.debug(f"Progress sink failed: {e}")
