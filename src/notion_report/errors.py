"""Error taxonomy for the report pipeline.

Parse, validation and size problems are resolved locally and only recorded;
network problems propagate with enough context to resume. Cancellation is
deliberately outside the ReportError hierarchy so that ``except ReportError``
never swallows it.
"""

from typing import Any, Optional


class ReportError(Exception):
    """Base class for every reportable pipeline error."""

    code = "REPORT_ERROR"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        """Convert to error response dict."""
        result: dict = {"code": self.code, "message": self.message}
        if self.context:
            result["context"] = self.context
        return result


class ParseAmbiguity(ReportError):
    """Input the parser resolved with a heuristic (never raised by the parser)."""

    code = "PARSE_AMBIGUITY"

    def __init__(self, message: str, line: Optional[int] = None, **context: Any):
        super().__init__(message, **context)
        self.line = line

    def to_dict(self) -> dict:
        result = super().to_dict()
        if self.line is not None:
            result["line"] = self.line
        return result


class StructuralValidationError(ReportError):
    """A block is missing the payload named by its ``type``."""

    code = "STRUCTURAL_VALIDATION"


class SizeLimitExceeded(ReportError):
    """A block, cell or text exceeds a hard Notion limit."""

    code = "SIZE_LIMIT_EXCEEDED"


class PlanError(ReportError):
    """A plan references a placeholder that no earlier request produces."""

    code = "PLAN_ERROR"


class RemoteApiError(ReportError):
    """Non-2xx response (or transport failure) from the Notion API."""

    code = "REMOTE_API_ERROR"

    def __init__(
        self,
        method: str,
        path: str,
        status: int,
        message: str,
        api_code: Optional[str] = None,
    ):
        super().__init__(
            f"{method} {path} failed with HTTP {status}: {message}",
            method=method,
            path=path,
            status=status,
            api_code=api_code,
        )
        self.method = method
        self.path = path
        self.status = status
        self.api_code = api_code
        self.detail = message

    @property
    def transient(self) -> bool:
        """Whether retrying the same request can succeed."""
        # status 0 is a transport failure (connect/read error)
        return self.status == 0 or self.status == 409 or self.status >= 500


class RateLimited(RemoteApiError):
    """HTTP 429 from the Notion API."""

    code = "RATE_LIMITED"

    def __init__(
        self,
        method: str,
        path: str,
        message: str = "rate limited",
        retry_after: Optional[float] = None,
    ):
        super().__init__(method, path, 429, message, api_code="rate_limited")
        self.retry_after = retry_after

    @property
    def transient(self) -> bool:
        return True


class ExecutionError(ReportError):
    """A plan request failed after exhausting retries.

    Carries the index of the failed request and a checkpoint so the caller
    can resume from the last completed request.
    """

    code = "EXECUTION_FAILED"

    def __init__(
        self,
        cause: RemoteApiError,
        request_index: int,
        label: str,
        checkpoint: Any = None,
    ):
        super().__init__(
            f"Request {request_index} ({label}) failed: {cause.message}",
            request_index=request_index,
            label=label,
            method=cause.method,
            path=cause.path,
            status=cause.status,
        )
        self.cause = cause
        self.request_index = request_index
        self.label = label
        self.checkpoint = checkpoint


class CancellationRequested(Exception):
    """The run was cancelled by the caller. Not an error; never retried."""

    def __init__(self, message: str = "Upload cancelled by user", checkpoint: Any = None):
        super().__init__(message)
        self.checkpoint = checkpoint
