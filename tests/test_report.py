"""Tests for the upload report and progress reporter."""

import json

from notion_report.errors import SizeLimitExceeded
from notion_report.progress import CANCELLED, FAILED, SUCCEEDED, ProgressReporter
from notion_report.report import UploadReport


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestUploadReport:
    """Tests for UploadReport."""

    def test_summary(self):
        clock = FakeClock()
        report = UploadReport(clock=clock)
        for status in ("valid", "valid", "repaired", "skipped", "chunked"):
            report.record_block(0, "paragraph", status)
        report.record_batch(0, 4, 1000)
        report.record_request("PATCH", "blocks/x/children", 200, 0.12)
        report.record_error("boom")
        clock.now += 2.5
        report.finish()

        summary = report.summary()
        assert summary == {
            "totalBlocks": 5,
            "validBlocks": 3,
            "repairedBlocks": 1,
            "skippedBlocks": 1,
            "batches": 1,
            "apiCalls": 1,
            "errors": 1,
            "duration": 2.5,
            "successRate": 80.0,
        }

    def test_empty_success_rate(self):
        assert UploadReport(clock=FakeClock()).summary()["successRate"] == 100.0

    def test_update_batch(self):
        report = UploadReport(clock=FakeClock())
        report.record_batch(0, 10, 500)
        report.update_batch(0, "failed", "HTTP 400")
        assert report.batch_processing[0]["status"] == "failed"
        assert report.batch_processing[0]["error"] == "HTTP 400"

    def test_typed_warning(self):
        report = UploadReport(clock=FakeClock())
        report.record_warning(SizeLimitExceeded("too big", size=60000), block=3)
        warning = report.warnings[0]
        assert warning["code"] == "SIZE_LIMIT_EXCEEDED"
        assert warning["context"] == {"size": 60000, "block": 3}

    def test_json_and_filename(self):
        report = UploadReport(clock=FakeClock(0.0))
        report.finish()
        data = json.loads(report.to_json())
        assert data["startTime"] == "1970-01-01T00:00:00Z"
        assert report.filename() == "notion-upload-report-1970-01-01T00-00-00.json"


class TestProgressReporter:
    """Tests for ProgressReporter."""

    def test_percent_never_decreases(self):
        progress = ProgressReporter()
        progress.update("a", 40)
        progress.update("b", 10)
        progress.update("c", 250)
        assert [e.percent for e in progress.events] == [40.0, 40.0, 100.0]

    def test_first_terminal_wins(self):
        seen = []
        progress = ProgressReporter(seen.append)
        progress.update("working", 50)
        progress.cancelled()
        progress.failed(RuntimeError("late"))
        progress.succeeded("https://www.notion.so/x")
        progress.update("ignored", 90)
        assert [e.status for e in seen][1:] == [CANCELLED]
        assert progress.terminal.status == CANCELLED
        assert progress.finished

    def test_failed_and_succeeded(self):
        failed = ProgressReporter()
        failed.failed(ValueError("bad input"))
        assert failed.terminal.status == FAILED
        assert failed.terminal.error == "bad input"

        done = ProgressReporter()
        done.succeeded("https://www.notion.so/x")
        assert done.terminal.status == SUCCEEDED
        assert done.terminal.percent == 100.0
        assert done.terminal.url == "https://www.notion.so/x"
