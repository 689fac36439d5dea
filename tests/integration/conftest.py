"""
Shared fixtures for gateway integration tests.

Backends are faked with httpx.MockTransport, so the adapters run their
real request building and response parsing against canned payloads.
"""

import json
from typing import Any, Callable, List

import httpx
import pytest


def build_sse(*events: Any) -> bytes:
    """
    Build a Server-Sent Events body.

    Each item is a dict (JSON data line), a raw string data line, or an
    (event name, dict) tuple.
    """
    lines = []
    for event in events:
        if isinstance(event, tuple):
            name, payload = event
            lines.append(f"event: {name}\ndata: {json.dumps(payload)}\n\n")
        elif isinstance(event, dict):
            lines.append(f"data: {json.dumps(event)}\n\n")
        else:
            lines.append(f"data: {event}\n\n")
    return "".join(lines).encode()


def build_ndjson(*events: dict) -> bytes:
    return "".join(json.dumps(event) + "\n" for event in events).encode()


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: List[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]

    @property
    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def sse_body():
    """Factory for SSE response bodies."""
    return build_sse


@pytest.fixture
def ndjson_body():
    """Factory for newline-delimited JSON response bodies."""
    return build_ndjson


@pytest.fixture
def mock_backend():
    """
    Factory returning (transport, client) for a request handler.

    The handler gets the httpx.Request and returns an httpx.Response.
    """
    def make(handler: Callable[[httpx.Request], httpx.Response]):
        transport = RecordingTransport(handler)
        return transport, httpx.AsyncClient(transport=transport)

    return make


@pytest.fixture
def sse_response():
    """Factory for a 200 text/event-stream response."""
    def make(*events: Any) -> httpx.Response:
        return httpx.Response(
            200,
            content=build_sse(*events),
            headers={"content-type": "text/event-stream"},
        )

    return make
