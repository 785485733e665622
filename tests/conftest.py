"""Shared fixtures: a fake Notion API behind httpx.MockTransport and a recorded sleep."""

import json
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx
import pytest


@dataclass
class Call:
    method: str
    path: str
    body: Any
    content_type: str


class FakeNotion:
    """Request handler imitating the Notion API.

    Every successful call returns a fresh id ("id-1", "id-2", ...). Failures
    are scripted per call number with fail(), or per request with
    fail_matching().
    """

    def __init__(self):
        self.calls: list[Call] = []
        self.failures: dict[int, httpx.Response] = {}
        self.rules: list[tuple[Callable[[Call], bool], httpx.Response]] = []
        self._ids = 0

    def fail(self, call_number: int, status: int, message: str = "bad request",
             code: str = "validation_error", headers: Optional[dict] = None):
        self.failures[call_number] = httpx.Response(
            status, json={"object": "error", "code": code, "message": message}, headers=headers
        )

    def fail_matching(self, method: str, path_prefix: str, status: int, message: str = "bad request"):
        def matches(call: Call) -> bool:
            return call.method == method and call.path.startswith(path_prefix)
        self.rules.append((matches, httpx.Response(
            status, json={"object": "error", "code": "validation_error", "message": message}
        )))

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def paths(self) -> list[str]:
        return [f"{c.method} {c.path}" for c in self.calls]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        content_type = request.headers.get("content-type", "")
        body = None
        if request.content and content_type.startswith("application/json"):
            body = json.loads(request.content)
        call = Call(request.method, request.url.path.removeprefix("/v1/"), body, content_type)
        self.calls.append(call)
        number = len(self.calls)

        if number in self.failures:
            return self.failures[number]
        for matches, response in self.rules:
            if matches(call):
                return response

        self._ids += 1
        new_id = f"id-{self._ids}"
        return httpx.Response(200, json={
            "object": "page",
            "id": new_id,
            "url": f"https://www.notion.so/{new_id}",
        })


@pytest.fixture
def fake_notion():
    return FakeNotion()


@pytest.fixture
def recorded_sleep():
    """(sleeps, sleep) where sleep records its delay instead of waiting."""
    sleeps: list[float] = []

    async def sleep(delay: float):
        sleeps.append(delay)

    return sleeps, sleep
