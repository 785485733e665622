"""Host-facing entry points: compile, execute, or do both.

The host owns jobs, persistence and scheduling. It calls compile_report()
for a dry run, execute_plan() to run (or resume) a plan, upload_report()
for the whole flow with terminal progress signalling, or append_report() to
add a report to an existing page in plain batches.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

import httpx

from .batcher import create_validated_batches
from .descriptors import Plan
from .errors import CancellationRequested, ReportError
from .executor import AppendResult, CancellationToken, ExecutionResult, NotionTransport, PlanExecutor, Sleep
from .parser import parse_content
from .plan import compile_blocks, compile_plan
from .progress import ProgressEvent, ProgressReporter
from .report import UploadReport

logger = logging.getLogger("notion-report")

ProgressArg = Union[ProgressReporter, Callable[[ProgressEvent], None], None]


def _reporter(progress: ProgressArg) -> ProgressReporter:
    if isinstance(progress, ProgressReporter):
        return progress
    return ProgressReporter(progress)


@dataclass
class UploadOutcome:
    plan: Plan
    result: ExecutionResult
    report: UploadReport

    @property
    def url(self) -> Optional[str]:
        return self.result.root_url


def compile_report(
    content: str,
    content_type: str,
    destination_id: str,
    progress: ProgressArg = None,
    title: Optional[str] = None,
    report: Optional[UploadReport] = None,
) -> Plan:
    """Parse report content and compile it into a request plan.

    Args:
        content: Markdown or JSON text.
        content_type: "markdown" or "json".
        destination_id: Notion page id to create the report page under.
    """
    reporter = _reporter(progress)
    reporter.update("Parsing content", 0)
    parsed = parse_content(content, content_type)
    reporter.update(f"Parsed {len(parsed.items)} content items")
    plan = compile_plan(parsed, destination_id, title=title, report=report)
    reporter.update(f"Compiled {len(plan.requests)} requests")
    return plan


async def execute_plan(
    plan: Plan,
    token: str,
    progress: ProgressArg = None,
    is_cancelled: Optional[Callable[[], bool]] = None,
    start_index: int = 0,
    resolved: Optional[dict[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    report: Optional[UploadReport] = None,
    sleep: Sleep = asyncio.sleep,
    timeout: Optional[float] = None,
) -> ExecutionResult:
    """Execute (or resume) a plan with a fresh executor.

    Args:
        plan: Plan from compile_report().
        token: Notion integration token.
        is_cancelled: Host predicate polled for cancellation.
        start_index, resolved: Checkpoint of an earlier run to resume from.
        transport: Optional httpx transport, for tests.
        timeout: Optional deadline in seconds; expiry counts as cancellation
            and carries the checkpoint of the interrupted request.
    """
    cancel_token = CancellationToken.from_callable(is_cancelled)
    async with NotionTransport(token, transport=transport) as client:
        executor = PlanExecutor(client, token=cancel_token, report=report, sleep=sleep)
        run = executor.execute(plan, _reporter(progress), start_index, resolved)
        if timeout is None:
            return await run
        try:
            return await asyncio.wait_for(run, timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Upload deadline of {timeout}s expired")
            raise CancellationRequested(
                f"Upload timed out after {timeout}s", checkpoint=executor.checkpoint
            )


async def upload_report(
    content: str,
    content_type: str,
    destination_id: str,
    token: str,
    progress: ProgressArg = None,
    is_cancelled: Optional[Callable[[], bool]] = None,
    title: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Sleep = asyncio.sleep,
    timeout: Optional[float] = None,
) -> UploadOutcome:
    """Compile and execute a report, ending with one terminal progress event.

    Raises:
        CancellationRequested, asyncio.CancelledError: After emitting the
            cancelled event.
        Exception: Any other failure, after emitting the failed event.
    """
    reporter = _reporter(progress)
    report = UploadReport()
    try:
        plan = compile_report(content, content_type, destination_id, reporter, title, report)
        result = await execute_plan(
            plan, token, reporter, is_cancelled,
            transport=transport, report=report, sleep=sleep, timeout=timeout,
        )
    except (CancellationRequested, asyncio.CancelledError):
        logger.info("Upload cancelled")
        reporter.cancelled()
        raise
    except Exception as e:
        logger.error(f"Upload failed: {e}")
        report.record_error(e if isinstance(e, ReportError) else f"{type(e).__name__}: {e}")
        reporter.failed(e)
        raise
    finally:
        report.finish()

    reporter.succeeded(result.root_url)
    return UploadOutcome(plan, result, report)


async def append_report(
    content: str,
    content_type: str,
    page_id: str,
    token: str,
    progress: ProgressArg = None,
    is_cancelled: Optional[Callable[[], bool]] = None,
    start_batch: int = 0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    report: Optional[UploadReport] = None,
    sleep: Sleep = asyncio.sleep,
) -> AppendResult:
    """Append a report to an existing page without creating databases.

    Tables are rendered as text. A batch that fails after retries is
    recorded and skipped; pass ``start_batch`` to resume a cancelled run.
    """
    reporter = _reporter(progress)
    parsed = parse_content(content, content_type)
    batches = create_validated_batches(compile_blocks(parsed), report=report).batches
    logger.info(f"Appending {len(batches)} batches to {page_id}")
    cancel_token = CancellationToken.from_callable(is_cancelled)
    async with NotionTransport(token, transport=transport) as client:
        executor = PlanExecutor(client, token=cancel_token, report=report, sleep=sleep)
        return await executor.append_batches(page_id, batches, reporter, start_batch)
