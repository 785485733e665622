"""Compile Markdown/JSON reports into Notion pages with inline databases."""

from .errors import (
    CancellationRequested,
    ExecutionError,
    PlanError,
    RateLimited,
    RemoteApiError,
    ReportError,
)
from .pipeline import UploadOutcome, append_report, compile_report, execute_plan, upload_report

__all__ = [
    "CancellationRequested",
    "ExecutionError",
    "PlanError",
    "RateLimited",
    "RemoteApiError",
    "ReportError",
    "UploadOutcome",
    "append_report",
    "compile_report",
    "execute_plan",
    "upload_report",
]
