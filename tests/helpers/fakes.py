"""Scripted completion service and workflow engine stub.

FakeCompleter answers by prompt kind (classifier, continuity, checklist,
answer), recognized from the system prompt. EngineStub serves canned
JSON for the workflow engine endpoints through ``httpx.MockTransport``
and records every request it sees.
"""

import json
from typing import Any

import httpx

from analysis_assistant.config import WorkflowEngineConfig
from analysis_assistant.services.llm_client import CompletionError
from analysis_assistant.services.workflow_client import WorkflowClient

ENGINE_BASE_URL = "http://engine.test"


def prompt_kind(system: str) -> str:
    """Which orchestrator stage built a system prompt."""
    if system.startswith("You classify requests"):
        return "classify"
    if system.startswith("You decide whether"):
        return "continuity"
    if system.startswith("You turn a user's chat requests"):
        return "checklist"
    return "answer"


class FakeCompleter:
    """Completion service returning scripted output per prompt kind.

    A dict response is JSON-encoded, an exception is raised, a callable
    is called with ``(system, messages)``, and a missing response raises
    CompletionError.
    """

    def __init__(
        self,
        classification: Any = None,
        continuity: Any = None,
        checklist: Any = None,
        answer: Any = "Here is what I found.",
    ) -> None:
        self.responses: dict[str, Any] = {
            "classify": classification,
            "continuity": continuity,
            "checklist": checklist,
            "answer": answer,
        }
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        system: str,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
    ) -> str:
        kind = prompt_kind(system)
        self.calls.append({"kind": kind, "system": system, "messages": messages})
        value = self.responses.get(kind)
        if isinstance(value, Exception):
            raise value
        if callable(value):
            value = value(system, messages)
        if value is None:
            raise CompletionError(f"no scripted {kind} response")
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return value

    def count(self, kind: str) -> int:
        return sum(1 for call in self.calls if call["kind"] == kind)

    def last(self, kind: str) -> dict[str, Any]:
        return [call for call in self.calls if call["kind"] == kind][-1]


Route = Any  # JSON body, (status, body) tuple, or callable(request) -> httpx.Response


class EngineStub:
    """In-memory workflow engine.

    Attributes:
        routes: ``(method, path) -> route``. Unmatched requests get 404.
        requests: Every request received, in order.
    """

    def __init__(self, routes: dict[tuple[str, str], Route] | None = None) -> None:
        self.routes: dict[tuple[str, str], Route] = dict(routes or {})
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"detail": "not found"})
        if callable(route):
            return route(request)
        if isinstance(route, tuple):
            status, body = route
            if isinstance(body, str):
                return httpx.Response(status, text=body)
            return httpx.Response(status, json=body)
        return httpx.Response(200, json=route)

    def client(self, **overrides: Any) -> WorkflowClient:
        config = WorkflowEngineConfig(base_url=ENGINE_BASE_URL, **overrides)
        return WorkflowClient(config, transport=httpx.MockTransport(self.handler))

    def posts(self, path: str = "/analyze") -> list[dict[str, Any]]:
        """Decoded JSON bodies of POSTs to a path."""
        return [
            json.loads(r.content)
            for r in self.requests
            if r.method == "POST" and r.url.path == path
        ]

    def gets(self, path: str) -> int:
        return sum(
            1 for r in self.requests if r.method == "GET" and r.url.path == path
        )


def dispatch_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(202, json={"status": "accepted"})
