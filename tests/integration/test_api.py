"""
Integration tests for the OpenAI-compatible HTTP API.

The app runs in-process over httpx.ASGITransport; backends are faked
with httpx.MockTransport through the shared client dependency.

Tests:
- Non-streaming and streaming chat completions
- Model listing from configured credentials
- Error bodies and status pass-through
- Caller disconnect releasing the backend stream
"""

import json

import httpx
import pytest

from chat_gateway.api.routes import (
    _stream_completion,
    get_env,
    get_gateway_config,
    get_http_client,
)
from chat_gateway.adapters import OpenAIAdapter
from chat_gateway.core.config import GatewayConfig
from chat_gateway.core.registry import get_descriptor
from chat_gateway.main import app
from chat_gateway.models.request import ChatRequest


HELLO_REQUEST = {
    "model": "gpt-4o-mini",
    "stream": False,
    "messages": [{"role": "user", "content": "Say hello!"}],
}

OPENAI_COMPLETION = {
    "id": "chatcmpl-abc",
    "object": "chat.completion",
    "created": 1700000000,
    "model": "gpt-4o-mini",
    "choices": [{
        "index": 0,
        "message": {"role": "assistant", "content": "Hello!"},
        "finish_reason": "stop",
    }],
    "usage": {"prompt_tokens": 9, "completion_tokens": 2, "total_tokens": 11},
}


def openai_frame(content=None, finish_reason=None, role=None):
    delta = {}
    if role:
        delta["role"] = role
    if content is not None:
        delta["content"] = content
    return {
        "id": "chatcmpl-abc",
        "model": "gpt-4o-mini",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }


def parse_sse(text):
    """Split an SSE body into decoded data payloads."""
    events = [block for block in text.split("\n\n") if block.strip()]
    assert all(block.startswith("data: ") for block in events)
    return [json.loads(block[len("data: "):]) for block in events]


class Gateway:
    """Test harness wiring the app to a fake backend and a fixed env."""

    def __init__(self, mock_backend):
        self._mock_backend = mock_backend
        self.env = {}
        self.transport = None

    def backend(self, handler):
        self.transport, client = self._mock_backend(handler)
        app.dependency_overrides[get_http_client] = lambda: client

    def client(self):
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


@pytest.fixture
def gateway(mock_backend):
    harness = Gateway(mock_backend)
    app.dependency_overrides[get_env] = lambda: dict(harness.env)
    app.dependency_overrides[get_gateway_config] = lambda: GatewayConfig()
    harness.backend(lambda request: httpx.Response(500, json={"error": "unexpected call"}))
    yield harness
    app.dependency_overrides.clear()


class TestChatCompletions:
    """Test POST /v1/chat/completions."""

    @pytest.mark.asyncio
    async def test_non_streaming(self, gateway):
        """Test a plain completion against the default backend."""
        gateway.env = {"OPENAI_API_KEY": "sk-test"}
        gateway.backend(lambda request: httpx.Response(200, json=OPENAI_COMPLETION))

        async with gateway.client() as client:
            response = await client.post("/v1/chat/completions", json=HELLO_REQUEST)

        assert response.status_code == 200
        data = response.json()
        assert data["object"] == "chat.completion"
        assert data["choices"][0]["message"]["role"] == "assistant"
        assert data["choices"][0]["message"]["content"] == "Hello!"
        assert data["choices"][0]["finish_reason"] == "stop"
        assert str(gateway.transport.last_request.url) == "https://api.openai.com/v1/chat/completions"

    @pytest.mark.asyncio
    async def test_streaming(self, gateway, sse_response):
        """Test a streamed completion is relayed as canonical SSE chunks."""
        gateway.env = {"OPENAI_API_KEY": "sk-test"}
        gateway.backend(lambda request: sse_response(
            openai_frame(role="assistant", content=""),
            openai_frame(content="Hel"),
            openai_frame(content="lo!"),
            openai_frame(finish_reason="stop"),
            "[DONE]",
        ))

        async with gateway.client() as client:
            response = await client.post(
                "/v1/chat/completions",
                json=dict(HELLO_REQUEST, stream=True),
            )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert "[DONE]" not in response.text

        chunks = parse_sse(response.text)
        assert len(chunks) >= 1
        assert chunks[0]["object"] == "chat.completion.chunk"
        assert chunks[0]["choices"][0]["delta"]["role"] == "assistant"
        assert len({c["id"] for c in chunks}) == 1
        assert [c["choices"][0]["finish_reason"] for c in chunks][-1] == "stop"
        assert all(c["choices"][0]["finish_reason"] is None for c in chunks[:-1])
        assert "".join(c["choices"][0]["delta"].get("content") or "" for c in chunks) == "Hello!"

    @pytest.mark.asyncio
    async def test_routes_by_model(self, gateway):
        """Test a Claude model is sent to the Anthropic backend."""
        gateway.env = {"OPENAI_API_KEY": "sk-test", "ANTHROPIC_API_KEY": "sk-ant"}
        gateway.backend(lambda request: httpx.Response(200, json={
            "id": "msg_01",
            "type": "message",
            "role": "assistant",
            "model": "claude-3-5-haiku-20241022",
            "content": [{"type": "text", "text": "Hi there"}],
            "stop_reason": "end_turn",
            "usage": {"input_tokens": 5, "output_tokens": 2},
        }))

        async with gateway.client() as client:
            response = await client.post(
                "/v1/chat/completions",
                json=dict(HELLO_REQUEST, model="claude-3-5-haiku-latest"),
            )

        assert response.status_code == 200
        assert response.json()["choices"][0]["message"]["content"] == "Hi there"
        assert gateway.transport.last_request.url.host == "api.anthropic.com"

    @pytest.mark.asyncio
    async def test_unsupported_model(self, gateway):
        """Test an unknown model is a 400 naming the model."""
        gateway.env = {"OPENAI_API_KEY": "sk-test"}

        async with gateway.client() as client:
            response = await client.post(
                "/v1/chat/completions",
                json=dict(HELLO_REQUEST, model="imaginary-model-7b"),
            )

        assert response.status_code == 400
        assert response.json() == {"error": "Model imaginary-model-7b not supported"}
        assert gateway.transport.requests == []

    @pytest.mark.asyncio
    async def test_no_credentials_unsupported(self, gateway):
        """Test the default backend's models need a key from somewhere."""
        async with gateway.client() as client:
            response = await client.post("/v1/chat/completions", json=HELLO_REQUEST)

        assert response.status_code == 400
        assert "gpt-4o-mini" in response.json()["error"]

    @pytest.mark.asyncio
    async def test_caller_key_used(self, gateway):
        """Test a Bearer key from the caller reaches the default backend."""
        gateway.backend(lambda request: httpx.Response(200, json=OPENAI_COMPLETION))

        async with gateway.client() as client:
            response = await client.post(
                "/v1/chat/completions",
                json=HELLO_REQUEST,
                headers={"Authorization": "Bearer sk-caller"},
            )

        assert response.status_code == 200
        assert gateway.transport.last_request.headers["authorization"] == "Bearer sk-caller"

    @pytest.mark.asyncio
    async def test_upstream_status_passed_through(self, gateway):
        """Test a backend failure keeps its status and flattened message."""
        gateway.env = {"OPENAI_API_KEY": "sk-wrong"}
        gateway.backend(lambda request: httpx.Response(401, json={
            "error": {"message": "Incorrect API key provided", "type": "invalid_request_error"},
        }))

        async with gateway.client() as client:
            response = await client.post("/v1/chat/completions", json=HELLO_REQUEST)
            streamed = await client.post("/v1/chat/completions", json=dict(HELLO_REQUEST, stream=True))

        assert response.status_code == 401
        assert response.json() == {"error": "Incorrect API key provided"}
        assert streamed.status_code == 401
        assert streamed.json() == {"error": "Incorrect API key provided"}

    @pytest.mark.asyncio
    async def test_mid_stream_error_event(self, gateway, sse_response):
        """Test a failure after output becomes a final error event."""
        gateway.env = {"OPENAI_API_KEY": "sk-test"}
        gateway.backend(lambda request: sse_response(
            openai_frame(content="Hel"),
            {"error": {"message": "The server had an error", "code": "server_error"}},
        ))

        async with gateway.client() as client:
            response = await client.post("/v1/chat/completions", json=dict(HELLO_REQUEST, stream=True))

        assert response.status_code == 200
        events = parse_sse(response.text)
        assert events[0]["choices"][0]["delta"]["content"] == "Hel"
        assert events[-1] == {"error": "The server had an error"}
        assert all("choices" in e for e in events[:-1])

    @pytest.mark.asyncio
    async def test_malformed_frame_error_event(self, gateway, sse_response):
        """Test a backend frame of the wrong shape ends the stream with an error event."""
        gateway.env = {"OPENAI_API_KEY": "sk-test"}
        gateway.backend(lambda request: sse_response(openai_frame(content="Hel"), "[1]"))

        async with gateway.client() as client:
            response = await client.post("/v1/chat/completions", json=dict(HELLO_REQUEST, stream=True))

        assert response.status_code == 200
        events = parse_sse(response.text)
        assert events[0]["choices"][0]["delta"]["content"] == "Hel"
        assert events[-1]["error"].startswith("Malformed response from openai")
        assert all("choices" in e for e in events[:-1])

    @pytest.mark.asyncio
    async def test_invalid_body(self, gateway):
        """Test a malformed request body is a 400 error."""
        gateway.env = {"OPENAI_API_KEY": "sk-test"}

        async with gateway.client() as client:
            response = await client.post("/v1/chat/completions", json={"model": "gpt-4o-mini"})

        assert response.status_code == 400
        assert "messages" in response.json()["error"]


class TestModels:
    """Test GET /v1/models."""

    @pytest.mark.asyncio
    async def test_no_credentials_empty_list(self, gateway):
        """Test no configured backend means no models."""
        async with gateway.client() as client:
            response = await client.get("/v1/models")

        assert response.status_code == 200
        assert response.json() == {"object": "list", "data": []}

    @pytest.mark.asyncio
    async def test_one_backend_adds_its_models(self, gateway):
        """Test configuring one backend lists exactly its models."""
        gateway.env = {"MOONSHOT_API_KEY": "ms"}

        async with gateway.client() as client:
            response = await client.get("/v1/models")

        data = response.json()["data"]
        assert [m["id"] for m in data] == list(get_descriptor("moonshot").supported_models)
        assert {m["owned_by"] for m in data} == {"moonshot"}
        assert all(m["object"] == "model" and isinstance(m["created"], int) for m in data)

    @pytest.mark.asyncio
    async def test_caller_key_lists_default_models(self, gateway):
        """Test a caller key alone lists the default backend's models."""
        async with gateway.client() as client:
            response = await client.get("/v1/models", headers={"Authorization": "Bearer sk-caller"})

        data = response.json()["data"]
        assert [m["id"] for m in data] == list(get_descriptor("openai").supported_models)


class TestHealth:
    """Test the health endpoint."""

    @pytest.mark.asyncio
    async def test_health(self, gateway):
        """Test the service reports healthy."""
        async with gateway.client() as client:
            response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class SlowBody(httpx.AsyncByteStream):
    """Endless-looking SSE body that records whether it was closed."""

    def __init__(self, count):
        self.count = count
        self.sent = 0
        self.closed = False

    async def __aiter__(self):
        for i in range(self.count):
            self.sent += 1
            yield f"data: {json.dumps(openai_frame(content=str(i)))}\n\n".encode()

    async def aclose(self):
        self.closed = True


class TestDisconnect:
    """Test a caller disconnect stops the backend stream."""

    @pytest.mark.asyncio
    async def test_disconnect_closes_backend(self, mock_backend):
        """Test closing the SSE body releases the upstream response."""
        body = SlowBody(100)
        _, client = mock_backend(lambda request: httpx.Response(
            200, stream=body, headers={"content-type": "text/event-stream"},
        ))
        provider = OpenAIAdapter("openai", "sk", ["gpt-4o-mini"], http_client=client)
        request = ChatRequest(**dict(HELLO_REQUEST, stream=True))

        response = await _stream_completion(provider, request)
        events = response.body_iterator
        first = await events.__anext__()
        second = await events.__anext__()
        await events.aclose()

        assert json.loads(first[len("data: "):])["choices"][0]["delta"]["content"] == "0"
        assert json.loads(second[len("data: "):])["choices"][0]["delta"]["content"] == "1"
        assert body.closed
        assert body.sent < 100
