"""Upload report: a per-run record of validation, batching and API calls.

The report is a plain JSON artifact the host can persist next to the job.
Its key names are consumed by external tooling and must not change.
"""

import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from .errors import ReportError


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class UploadReport:
    """Accumulates events for one upload run."""
    clock: Callable[[], float] = time.time
    start_time: float = 0.0
    end_time: Optional[float] = None
    block_validation: list[dict] = field(default_factory=list)
    batch_processing: list[dict] = field(default_factory=list)
    api_requests: list[dict] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)
    total_blocks: int = 0

    def __post_init__(self):
        if not self.start_time:
            self.start_time = self.clock()

    # -- recording ----------------------------------------------------------

    def record_block(self, index: int, block_type: str, status: str, issues: Optional[list[str]] = None):
        """Record the validation outcome of one block (valid/repaired/skipped/chunked)."""
        self.block_validation.append({
            "index": index,
            "type": block_type,
            "status": status,
            "issues": list(issues or []),
            "timestamp": _iso(self.clock()),
        })

    def record_batch(self, index: int, block_count: int, size: int, status: str = "created",
                     error: Optional[str] = None):
        entry: dict = {
            "index": index,
            "blockCount": block_count,
            "size": size,
            "status": status,
            "timestamp": _iso(self.clock()),
        }
        if error:
            entry["error"] = error
        self.batch_processing.append(entry)

    def update_batch(self, index: int, status: str, error: Optional[str] = None):
        """Update the status of a previously recorded batch (e.g. uploaded/failed)."""
        for entry in self.batch_processing:
            if entry["index"] == index:
                entry["status"] = status
                if error:
                    entry["error"] = error
                return
        self.record_batch(index, 0, 0, status, error)

    def record_request(self, method: str, path: str, status: int, duration: float,
                       attempt: int = 1, error: Optional[str] = None):
        entry: dict = {
            "method": method,
            "path": path,
            "status": status,
            "duration": round(duration, 3),
            "attempt": attempt,
            "timestamp": _iso(self.clock()),
        }
        if error:
            entry["error"] = error
        self.api_requests.append(entry)

    def record_error(self, error: Union[ReportError, str], **context: Any):
        if isinstance(error, ReportError):
            entry = error.to_dict()
        else:
            entry = {"code": "ERROR", "message": str(error)}
        if context:
            entry["context"] = {**entry.get("context", {}), **context}
        entry["timestamp"] = _iso(self.clock())
        self.errors.append(entry)

    def record_warning(self, warning: Union[ReportError, str], **context: Any):
        if isinstance(warning, ReportError):
            entry = warning.to_dict()
        else:
            entry = {"message": str(warning)}
        if context:
            entry["context"] = {**entry.get("context", {}), **context}
        entry["timestamp"] = _iso(self.clock())
        self.warnings.append(entry)

    def finish(self):
        self.end_time = self.clock()

    # -- output -------------------------------------------------------------

    def summary(self) -> dict:
        statuses = [entry["status"] for entry in self.block_validation]
        total = self.total_blocks or len(statuses)
        valid = statuses.count("valid") + statuses.count("chunked")
        repaired = statuses.count("repaired")
        skipped = statuses.count("skipped")
        end = self.end_time if self.end_time is not None else self.clock()
        success_rate = round(100.0 * (valid + repaired) / total, 1) if total else 100.0
        return {
            "totalBlocks": total,
            "validBlocks": valid,
            "repairedBlocks": repaired,
            "skippedBlocks": skipped,
            "batches": len(self.batch_processing),
            "apiCalls": len(self.api_requests),
            "errors": len(self.errors),
            "duration": round(end - self.start_time, 3),
            "successRate": success_rate,
        }

    def to_dict(self) -> dict:
        return {
            "summary": self.summary(),
            "blockValidation": self.block_validation,
            "batchProcessing": self.batch_processing,
            "apiRequests": self.api_requests,
            "errors": self.errors,
            "warnings": self.warnings,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time) if self.end_time is not None else None,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    def filename(self) -> str:
        stamp = datetime.fromtimestamp(self.start_time, tz=timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
        return f"notion-upload-report-{stamp}.json"
