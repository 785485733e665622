"""Execution engine: run a request plan against the Notion API.

Requests run strictly in order on one asyncio task. Each call is paced by a
per-run RateLimiter, retried with exponential backoff on rate limits and
transient failures, and raced against a CancellationToken so a cancelled
run stops at the in-flight call.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import httpx

from .batcher import create_validated_batches
from .descriptors import ROOT_ID, Plan, RequestDescriptor, FileUpload, resolve_placeholders
from .errors import CancellationRequested, ExecutionError, RateLimited, RemoteApiError
from .progress import ProgressReporter
from .report import UploadReport
from .tables import TableBuildState

logger = logging.getLogger("notion-report")

# =============================================================================
# Configuration
# =============================================================================

NOTION_API_BASE = "https://api.notion.com/v1/"
# Databases are created and extended through the pre-data-source endpoints
NOTION_VERSION = "2022-06-28"

MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.0  # seconds
RETRY_JITTER_MAX = 0.5  # max random jitter to add (seconds)

# Notion allows ~3 requests per second
MIN_CALL_INTERVAL = 0.35

REQUEST_TIMEOUT = 30.0

Sleep = Callable[[float], Awaitable[Any]]


def _compute_retry_delay(attempt: int, retry_after: Optional[float] = None) -> float:
    """Compute exponential backoff delay with jitter.

    Args:
        attempt: Current retry attempt number (0-indexed).
        retry_after: Optional Retry-After header value from server.

    Returns:
        Delay in seconds, including random jitter to prevent thundering herd.
    """
    base_delay = RETRY_BASE_DELAY * (2 ** attempt)
    if retry_after is not None:
        base_delay = max(retry_after, base_delay)
    return base_delay + random.uniform(0, RETRY_JITTER_MAX)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def page_url(page_id: str) -> str:
    return f"https://www.notion.so/{page_id.replace('-', '')}"


# =============================================================================
# Transport
# =============================================================================

class NotionTransport:
    """Authenticated Notion API client on top of httpx.AsyncClient.

    Args:
        token: Integration token.
        transport: Optional httpx transport (httpx.MockTransport in tests).
    """

    def __init__(
        self,
        token: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        base_url: str = NOTION_API_BASE,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Notion-Version": NOTION_VERSION,
            },
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "NotionTransport":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        body: Optional[dict] = None,
        upload: Optional[FileUpload] = None,
    ) -> dict:
        """Send one request and return the decoded JSON response.

        Raises:
            RateLimited: HTTP 429.
            RemoteApiError: Any other non-2xx status, or a transport failure
                (status 0).
        """
        kwargs: dict = {}
        if upload is not None:
            kwargs["files"] = {"file": (upload.name, upload.content, upload.content_type)}
        elif method != "GET":
            kwargs["json"] = body or {}

        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise RemoteApiError(method, path, 0, f"{type(e).__name__}: {e}") from e

        if response.status_code == 429:
            raise RateLimited(
                method, path,
                _error_message(response),
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if response.status_code >= 400:
            api_code = None
            try:
                api_code = response.json().get("code")
            except ValueError:
                pass
            raise RemoteApiError(method, path, response.status_code, _error_message(response), api_code)

        if not response.content:
            return {}
        return response.json()

    async def whoami(self) -> dict:
        return await self.request("GET", "users/me")


def _error_message(response: httpx.Response, max_len: int = 300) -> str:
    """Notion error message from a response body, or the raw text."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:max_len]
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])[:max_len]
    return response.text[:max_len]


# =============================================================================
# Pacing and Cancellation
# =============================================================================

class RateLimiter:
    """Enforces a minimum interval between paced calls within one run."""

    def __init__(
        self,
        min_interval: float = MIN_CALL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.min_interval = min_interval
        self.clock = clock
        self.sleep = sleep
        self._last: Optional[float] = None

    async def wait(self):
        now = self.clock()
        delay = 0.0
        if self._last is not None:
            delay = self._last + self.min_interval - now
            if delay > 0:
                await self.sleep(delay)
        self._last = now + max(delay, 0.0)


class CancellationToken:
    """Cooperative cancellation for one run.

    The token is cancelled explicitly with cancel() or, when built with
    from_callable(), whenever the host predicate returns True.
    """

    def __init__(self, is_cancelled: Optional[Callable[[], bool]] = None, poll_interval: float = 0.1):
        self._is_cancelled = is_cancelled
        self.poll_interval = poll_interval
        self._cancelled = False
        self._event = asyncio.Event()

    @classmethod
    def from_callable(cls, is_cancelled: Optional[Callable[[], bool]]) -> "CancellationToken":
        return cls(is_cancelled)

    def cancel(self):
        self._cancelled = True
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if not self._cancelled and self._is_cancelled is not None and self._is_cancelled():
            self.cancel()
        return self._cancelled

    def raise_if_cancelled(self):
        if self.cancelled:
            raise CancellationRequested()

    async def wait(self):
        """Return once the token is cancelled."""
        while not self.cancelled:
            if self._is_cancelled is None:
                await self._event.wait()
                return
            try:
                await asyncio.wait_for(self._event.wait(), self.poll_interval)
            except asyncio.TimeoutError:
                continue

    async def run(self, awaitable: Awaitable):
        """Await awaitable unless the token is cancelled first.

        Raises:
            CancellationRequested: The token was cancelled before the call
                finished; the call is aborted.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise CancellationRequested()
        call = asyncio.ensure_future(awaitable)
        watcher = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({call, watcher}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            call.cancel()
            raise
        finally:
            watcher.cancel()
        if call.done():
            return call.result()
        call.cancel()
        try:
            await call
        except asyncio.CancelledError:
            pass
        raise CancellationRequested()


# =============================================================================
# Retry
# =============================================================================

async def call_with_retry(
    send: Callable[[], Awaitable[dict]],
    method: str,
    path: str,
    token: CancellationToken,
    sleep: Sleep = asyncio.sleep,
    report: Optional[UploadReport] = None,
    max_retries: int = MAX_RETRIES,
) -> dict:
    """Call send() with retry on rate limits and transient failures.

    Non-transient errors propagate on the first attempt. Cancellation aborts
    an in-flight attempt or backoff sleep and is never retried.
    """
    for attempt in range(max_retries):
        token.raise_if_cancelled()
        started = time.monotonic()
        try:
            result = await token.run(send())
        except RemoteApiError as e:
            if report is not None:
                report.record_request(method, path, e.status, time.monotonic() - started,
                                      attempt + 1, error=e.detail)
            if not e.transient or attempt == max_retries - 1:
                logger.error(f"{method} {path} failed (attempt {attempt + 1}): {e.message}")
                raise
            retry_after = e.retry_after if isinstance(e, RateLimited) else None
            delay = _compute_retry_delay(attempt, retry_after)
            if isinstance(e, RateLimited):
                logger.warning(f"Rate limited, waiting {delay:.1f}s (attempt {attempt + 1})")
            else:
                logger.warning(f"HTTP {e.status} on {method} {path}, retrying in {delay:.1f}s (attempt {attempt + 1})")
            await token.run(sleep(delay))
            continue

        if report is not None:
            report.record_request(method, path, 200, time.monotonic() - started, attempt + 1)
        return result

    raise RuntimeError("unreachable")


# =============================================================================
# Plan Execution
# =============================================================================

@dataclass
class Checkpoint:
    """Where to resume a run: the next request index and bound placeholders."""
    next_index: int
    resolved: dict[str, str]


@dataclass
class ExecutionResult:
    root_id: Optional[str]
    root_url: Optional[str]
    totals: dict[str, int]
    next_index: int
    resolved: dict[str, str]
    table_states: dict[str, TableBuildState] = field(default_factory=dict)


@dataclass
class AppendResult:
    page_id: str
    appended_batches: int = 0
    blocks_appended: int = 0
    failed_batches: list[tuple[int, RemoteApiError]] = field(default_factory=list)
    next_batch: int = 0


def _empty_totals() -> dict[str, int]:
    return {
        "requests": 0,
        "blocks_appended": 0,
        "databases": 0,
        "properties": 0,
        "rows": 0,
        "uploads": 0,
        "skipped": 0,
        "aborted_tables": 0,
    }


class PlanExecutor:
    """Runs plans (and legacy batch appends) for one upload.

    Args:
        transport: NotionTransport (or anything with the same request()).
        limiter: Pacing for paced requests; a fresh RateLimiter by default.
        token: Cancellation token; never cancelled by default.
        report: Optional upload report receiving per-request events.
        sleep: Sleep used for backoff (and for the default limiter).
    """

    def __init__(
        self,
        transport: NotionTransport,
        limiter: Optional[RateLimiter] = None,
        token: Optional[CancellationToken] = None,
        report: Optional[UploadReport] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.transport = transport
        self.limiter = limiter or RateLimiter(sleep=sleep)
        self.token = token or CancellationToken()
        self.report = report
        self.sleep = sleep
        # Where a run interrupted from outside (e.g. by a deadline) resumes
        self.checkpoint: Optional[Checkpoint] = None

    async def _send(self, method: str, path: str, body: Optional[dict] = None,
                    upload: Optional[FileUpload] = None, pace: bool = True) -> dict:
        if pace:
            await self.limiter.wait()
        return await call_with_retry(
            lambda: self.transport.request(method, path, body, upload),
            method, path, self.token, sleep=self.sleep, report=self.report,
        )

    async def _append_fallback(self, root_id: str, blocks: list[dict]) -> int:
        """Append fallback blocks to the root page; return the block count."""
        appended = 0
        for batch in create_validated_batches(blocks, report=self.report).batches:
            await self._send("PATCH", f"blocks/{root_id}/children", {"children": batch})
            appended += len(batch)
        return appended

    async def execute(
        self,
        plan: Plan,
        progress: Optional[ProgressReporter] = None,
        start_index: int = 0,
        resolved: Optional[dict[str, str]] = None,
    ) -> ExecutionResult:
        """Execute plan requests in order, starting at start_index.

        Returns:
            ExecutionResult with the root page id and URL and per-kind totals.

        Raises:
            PlanError: A placeholder has no bound id.
            ExecutionError: A request failed after retries (except a failed
                database creation, which aborts only its table).
            CancellationRequested: The token was cancelled; its checkpoint
                tells where to resume.
        """
        progress = progress or ProgressReporter()
        resolved = dict(resolved or {})
        totals = _empty_totals()
        table_states: dict[str, TableBuildState] = {}
        aborted_groups: set[str] = set()
        root_url: Optional[str] = None
        total = len(plan.requests)
        logger.info(f"Executing plan: {total} requests from index {start_index}")

        for index in range(start_index, total):
            request: RequestDescriptor = plan.requests[index]
            # Skipped requests never become a checkpoint: their ids are unbound
            if request.group in aborted_groups:
                totals["skipped"] += 1
                continue

            self.checkpoint = Checkpoint(index, dict(resolved))
            if self.token.cancelled:
                raise CancellationRequested(checkpoint=self.checkpoint)

            path = resolve_placeholders(request.path, resolved)
            body = resolve_placeholders(request.body, resolved)
            try:
                response = await self._send(request.method, path, body, request.upload, request.pace)
            except CancellationRequested as e:
                e.checkpoint = Checkpoint(index, dict(resolved))
                raise
            except RemoteApiError as e:
                if not (request.abort_group_on_failure and request.group):
                    if self.report is not None:
                        self.report.record_error(e, request_index=index, label=request.label)
                    raise ExecutionError(e, index, request.label, Checkpoint(index, dict(resolved))) from e
                logger.warning(f"{request.label} failed, skipping rest of table: {e.message}")
                if self.report is not None:
                    self.report.record_error(e, request_index=index, label=request.label)
                aborted_groups.add(request.group)
                table_states[request.group] = TableBuildState.ABORTED
                totals["aborted_tables"] += 1
                if request.fallback_blocks:
                    # A failed fallback resumes at the database creation
                    try:
                        totals["blocks_appended"] += await self._append_fallback(
                            resolved[ROOT_ID], request.fallback_blocks
                        )
                    except CancellationRequested as cancelled:
                        cancelled.checkpoint = Checkpoint(index, dict(resolved))
                        raise
                    except RemoteApiError as fallback_error:
                        raise ExecutionError(
                            fallback_error, index, f"{request.label} (fallback)",
                            Checkpoint(index, dict(resolved)),
                        ) from fallback_error
                continue

            totals["requests"] += 1
            if request.produces:
                produced_id = response.get("id")
                if not produced_id:
                    missing = RemoteApiError(request.method, path, 200, "response has no id")
                    raise ExecutionError(missing, index, request.label, Checkpoint(index, dict(resolved)))
                resolved[request.produces] = produced_id
                if request.produces == ROOT_ID:
                    root_url = response.get("url")
            self._count(request, totals)
            if request.group and request.phase is not None:
                table_states[request.group] = request.phase
            progress.update(request.label or f"{request.method} {request.path}",
                            100.0 * (index + 1) / total)
            self.checkpoint = Checkpoint(index + 1, dict(resolved))
            if self.token.cancelled:
                raise CancellationRequested(checkpoint=self.checkpoint)

        for group, state in table_states.items():
            if state != TableBuildState.ABORTED:
                table_states[group] = TableBuildState.DONE

        root_id = resolved.get(ROOT_ID)
        if root_id and not root_url:
            root_url = page_url(root_id)
        logger.info(f"Plan complete: {totals}")
        return ExecutionResult(root_id, root_url, totals, total, resolved, table_states)

    @staticmethod
    def _count(request: RequestDescriptor, totals: dict[str, int]):
        if request.path.endswith("/children"):
            totals["blocks_appended"] += len((request.body or {}).get("children", []))
        elif request.method == "POST" and request.path == "databases":
            totals["databases"] += 1
        elif request.method == "PATCH" and request.path.startswith("databases/"):
            totals["properties"] += 1
        elif request.method == "POST" and request.path == "pages" and request.produces != ROOT_ID:
            totals["rows"] += 1
        elif request.upload is not None:
            totals["uploads"] += 1

    async def append_batches(
        self,
        page_id: str,
        batches: list[list[dict]],
        progress: Optional[ProgressReporter] = None,
        start_batch: int = 0,
    ) -> AppendResult:
        """Append batches of blocks to one page.

        A batch that still fails after retries is recorded and the next
        batch is attempted. Cancellation stops the run before the next batch.
        """
        progress = progress or ProgressReporter()
        result = AppendResult(page_id=page_id, next_batch=start_batch)
        total = len(batches)

        for index in range(start_batch, total):
            if self.token.cancelled:
                raise CancellationRequested(checkpoint=Checkpoint(index, {ROOT_ID: page_id}))
            batch = batches[index]
            try:
                await self._send("PATCH", f"blocks/{page_id}/children", {"children": batch})
            except CancellationRequested as e:
                e.checkpoint = Checkpoint(index, {ROOT_ID: page_id})
                raise
            except RemoteApiError as e:
                logger.error(f"Batch {index + 1}/{total} failed: {e.message}")
                result.failed_batches.append((index, e))
                if self.report is not None:
                    self.report.update_batch(index, "failed", e.message)
                    self.report.record_error(e, batch=index)
            else:
                result.appended_batches += 1
                result.blocks_appended += len(batch)
                if self.report is not None:
                    self.report.update_batch(index, "uploaded")
            result.next_batch = index + 1
            progress.update(f"Uploaded batch {index + 1}/{total}", 100.0 * (index + 1) / total)
            if self.token.cancelled:
                raise CancellationRequested(checkpoint=Checkpoint(index + 1, {ROOT_ID: page_id}))

        return result
