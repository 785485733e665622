"""Request descriptors and plans.

A plan is an ordered list of Notion API requests. Requests may refer to ids
that only exist once an earlier request has run, through placeholders such
as ``{rootId}``, ``{dbId_3}`` or ``{fileUpload_2}`` embedded in the path or
anywhere in the body. The executor binds each placeholder to the ``id`` of
the response of the request that produces it.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Optional

from .errors import PlanError

PLACEHOLDER_PATTERN = re.compile(r'\{(rootId|dbId_\d+|fileUpload_\d+)\}')

ROOT_ID = "rootId"


def placeholder(name: str) -> str:
    """Render a placeholder name as it appears in paths and bodies."""
    return "{" + name + "}"


@dataclass
class FileUpload:
    """File content sent with a multipart file_uploads/{id}/send request."""
    name: str
    content: bytes
    content_type: str = "application/json"


@dataclass
class RequestDescriptor:
    """One Notion API request in a plan."""
    method: str
    path: str
    body: Optional[dict] = None
    produces: Optional[str] = None
    label: str = ""
    group: Optional[str] = None
    abort_group_on_failure: bool = False
    fallback_blocks: list[dict] = field(default_factory=list)
    pace: bool = True
    upload: Optional[FileUpload] = None
    # TableBuildState of the table protocol step this request belongs to
    phase: Any = None

    @property
    def consumes(self) -> list[str]:
        """Placeholder names referenced by the path or body, in first-seen order."""
        names: list[str] = []
        for name in _find_placeholders(self.path) + _find_placeholders(self.body):
            if name not in names:
                names.append(name)
        return names


def _find_placeholders(value: Any) -> list[str]:
    if isinstance(value, str):
        return PLACEHOLDER_PATTERN.findall(value)
    if isinstance(value, dict):
        found = []
        for key, item in value.items():
            found.extend(_find_placeholders(key))
            found.extend(_find_placeholders(item))
        return found
    if isinstance(value, (list, tuple)):
        found = []
        for item in value:
            found.extend(_find_placeholders(item))
        return found
    return []


def resolve_placeholders(value: Any, resolved: dict[str, str]) -> Any:
    """Return a copy of value with every placeholder replaced by its id.

    Raises:
        PlanError: A placeholder has no bound id.
    """
    if isinstance(value, str):
        def substitute(match: re.Match) -> str:
            name = match.group(1)
            if name not in resolved:
                raise PlanError(f"Unresolved placeholder {match.group(0)}", placeholder=name)
            return resolved[name]
        return PLACEHOLDER_PATTERN.sub(substitute, value)
    if isinstance(value, dict):
        return {
            resolve_placeholders(k, resolved): resolve_placeholders(v, resolved)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [resolve_placeholders(item, resolved) for item in value]
    return value


@dataclass
class Plan:
    """Ordered requests plus human-readable steps and advisory notes."""
    requests: list[RequestDescriptor] = field(default_factory=list)
    steps: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def add(self, request: RequestDescriptor, step: Optional[str] = None) -> int:
        """Append a request (and optional step text); return its 1-based index."""
        self.requests.append(request)
        if step:
            self.steps.append(step)
        return len(self.requests)

    def next_placeholder(self, prefix: str) -> str:
        """Placeholder name for the request about to be added (e.g. dbId_4)."""
        return f"{prefix}_{len(self.requests) + 1}"

    def validate(self):
        """Check that every consumed placeholder is produced by an earlier request.

        Raises:
            PlanError: On the first request that consumes an unknown placeholder.
        """
        produced: set[str] = set()
        for index, request in enumerate(self.requests):
            for name in request.consumes:
                if name not in produced:
                    raise PlanError(
                        f"Request {index} ({request.label or request.path}) uses "
                        f"{placeholder(name)} before it is produced",
                        request_index=index,
                        placeholder=name,
                    )
            if request.produces:
                produced.add(request.produces)

    def groups(self) -> list[str]:
        seen: list[str] = []
        for request in self.requests:
            if request.group and request.group not in seen:
                seen.append(request.group)
        return seen

    def summary(self) -> dict:
        """Counts of requests by kind, for dry runs."""
        counts = {"requests": len(self.requests), "appends": 0, "databases": 0,
                  "properties": 0, "rows": 0, "uploads": 0}
        for request in self.requests:
            if request.path.endswith("/children"):
                counts["appends"] += 1
            elif request.method == "POST" and request.path == "databases":
                counts["databases"] += 1
            elif request.method == "PATCH" and request.path.startswith("databases/"):
                counts["properties"] += 1
            elif request.method == "POST" and request.path == "pages" and request.produces != ROOT_ID:
                counts["rows"] += 1
            elif request.path.startswith("file_uploads"):
                counts["uploads"] += 1
        return counts
