"""Progress signals for the host.

The core never owns job state. It reports human-readable progress with a
non-decreasing percentage and ends every run with exactly one terminal
event: succeeded (with the page URL), failed (with the error) or cancelled.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger("notion-report")

RUNNING = "running"
SUCCEEDED = "succeeded"
FAILED = "failed"
CANCELLED = "cancelled"

TERMINAL_STATUSES = {SUCCEEDED, FAILED, CANCELLED}


@dataclass(frozen=True)
class ProgressEvent:
    message: str
    percent: Optional[float] = None
    status: str = RUNNING
    url: Optional[str] = None
    error: Optional[str] = None


class ProgressReporter:
    """Wraps a host callback and enforces the progress contract.

    Percentages are clamped so they never go down. The first terminal event
    wins; later terminal calls and updates are ignored. Every event is also
    kept in ``events`` for inspection.
    """

    def __init__(self, callback: Optional[Callable[[ProgressEvent], None]] = None):
        self.callback = callback
        self.events: list[ProgressEvent] = []
        self.percent = 0.0
        self.terminal: Optional[ProgressEvent] = None

    @property
    def finished(self) -> bool:
        return self.terminal is not None

    def _emit(self, event: ProgressEvent):
        self.events.append(event)
        if self.callback is not None:
            self.callback(event)

    def update(self, message: str, percent: Optional[float] = None):
        if self.finished:
            return
        if percent is not None:
            self.percent = max(self.percent, min(100.0, float(percent)))
        self._emit(ProgressEvent(message, round(self.percent, 1)))

    def _finish(self, event: ProgressEvent):
        if self.finished:
            logger.debug(f"Ignoring terminal event after {self.terminal.status}: {event.status}")
            return
        self.terminal = event
        self._emit(event)

    def succeeded(self, url: str):
        self.percent = 100.0
        self._finish(ProgressEvent("Upload complete", 100.0, SUCCEEDED, url=url))

    def failed(self, error: BaseException):
        self._finish(ProgressEvent(f"Upload failed: {error}", self.percent, FAILED, error=str(error)))

    def cancelled(self):
        self._finish(ProgressEvent("Upload cancelled by user", self.percent, CANCELLED))
