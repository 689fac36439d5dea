"""
Integration tests for stream translation.

Tests:
- Delta and snapshot content modes
- Stable chunk ids and a single terminal chunk
- Cooperative cancellation and upstream release
- SSE parsing and encoding
"""

import asyncio
import json

import httpx
import pytest

from chat_gateway.core.streaming import (
    CancelToken,
    StreamEvent,
    StreamTranslator,
    encode_sse,
    iter_sse,
)
from chat_gateway.models.response import Usage


class Source:
    """Async event source that records how far it was consumed."""

    def __init__(self, *events):
        self.events = list(events)
        self.pulled = 0
        self.closed = False

    async def __call__(self):
        try:
            for event in self.events:
                self.pulled += 1
                yield event
        finally:
            self.closed = True


class StalledSource:
    """Async event source that goes quiet after its events until released."""

    def __init__(self, *events):
        self.events = list(events)
        self.release = asyncio.Event()
        self.interrupted = False
        self.closed = False

    async def __call__(self):
        try:
            for event in self.events:
                yield event
            await self.release.wait()
            yield StreamEvent(content="late")
        except asyncio.CancelledError:
            self.interrupted = True
            raise
        finally:
            self.closed = True


async def collect(chunks):
    return [chunk async for chunk in chunks]


def contents(chunks):
    return "".join(c.content or "" for c in chunks)


class TestDeltaMode:
    """Test backends that stream increments."""

    @pytest.mark.asyncio
    async def test_content_passes_through(self):
        """Test deltas are relayed in order."""
        source = Source(
            StreamEvent(role="assistant"),
            StreamEvent(content="Hel"),
            StreamEvent(content="lo"),
            StreamEvent(finish_reason="stop"),
        )
        chunks = await collect(StreamTranslator("gpt-4o").translate(source()))

        assert contents(chunks) == "Hello"
        assert [c.content for c in chunks[:-1]] == [None, "Hel", "lo"]

    @pytest.mark.asyncio
    async def test_single_id_and_terminal_chunk(self):
        """Test all chunks share an id and only the last one finishes."""
        source = Source(
            StreamEvent(content="a"),
            StreamEvent(content="b"),
            StreamEvent(content="c", finish_reason="length"),
        )
        chunks = await collect(StreamTranslator("gpt-4o").translate(source()))

        assert len({c.id for c in chunks}) == 1
        assert chunks[0].id.startswith("chatcmpl-")
        assert [c.finish_reason for c in chunks] == [None, None, None, "length"]
        assert chunks[-1].choices[0].delta.content is None
        assert contents(chunks) == "abc"

    @pytest.mark.asyncio
    async def test_backend_id_and_model_kept(self):
        """Test the first event's id and model are reused for every chunk."""
        source = Source(
            StreamEvent(id="msg_01", model="claude-3-5-haiku-20241022", content="x"),
            StreamEvent(id="msg_02", content="y"),
        )
        chunks = await collect(StreamTranslator("claude-3-5-haiku-latest").translate(source()))

        assert {c.id for c in chunks} == {"msg_01"}
        assert {c.model for c in chunks} == {"claude-3-5-haiku-20241022"}

    @pytest.mark.asyncio
    async def test_first_chunk_announces_role(self):
        """Test only the first chunk carries role=assistant."""
        source = Source(StreamEvent(content="x"), StreamEvent(content="y"))
        chunks = await collect(StreamTranslator("gpt-4o").translate(source()))

        assert chunks[0].choices[0].delta.role == "assistant"
        assert all(c.choices[0].delta.role is None for c in chunks[1:])

    @pytest.mark.asyncio
    async def test_stop_synthesized(self):
        """Test a stream ending without a finish reason gets a stop chunk."""
        source = Source(StreamEvent(content="partial"))
        chunks = await collect(StreamTranslator("gpt-4o").translate(source()))

        assert chunks[-1].finish_reason == "stop"
        assert sum(1 for c in chunks if c.finish_reason is not None) == 1

    @pytest.mark.asyncio
    async def test_empty_stream_still_terminates(self):
        """Test an empty backend stream yields a role chunk, then an empty terminal chunk."""
        chunks = await collect(StreamTranslator("gpt-4o").translate(Source()()))

        assert len(chunks) == 2
        assert chunks[0].finish_reason is None
        assert chunks[0].to_openai_format()["choices"][0]["delta"] == {"role": "assistant"}
        assert chunks[1].finish_reason == "stop"
        assert chunks[1].to_openai_format()["choices"][0]["delta"] == {}

    @pytest.mark.asyncio
    async def test_finish_only_stream(self):
        """Test a stream that finishes without output keeps the terminal delta empty."""
        source = Source(StreamEvent(finish_reason="length", usage=Usage.of(3, 0)))
        chunks = await collect(StreamTranslator("gpt-4o").translate(source()))

        assert [c.finish_reason for c in chunks] == [None, "length"]
        assert chunks[0].choices[0].delta.role == "assistant"
        assert chunks[-1].to_openai_format()["choices"][0]["delta"] == {}
        assert chunks[-1].usage.total_tokens == 3

    @pytest.mark.asyncio
    async def test_events_after_finish_ignored(self):
        """Test nothing is emitted after the first finish reason."""
        source = Source(
            StreamEvent(content="done", finish_reason="stop"),
            StreamEvent(content="ignored"),
        )
        chunks = await collect(StreamTranslator("gpt-4o").translate(source()))

        assert contents(chunks) == "done"
        assert source.pulled == 1
        assert source.closed

    @pytest.mark.asyncio
    async def test_usage_on_terminal_chunk(self):
        """Test the last usage seen is attached to the terminal chunk."""
        source = Source(
            StreamEvent(content="hi"),
            StreamEvent(finish_reason="stop", usage=Usage.of(5, 2)),
        )
        chunks = await collect(StreamTranslator("gpt-4o").translate(source()))

        assert chunks[-1].usage.total_tokens == 7
        assert all(c.usage is None for c in chunks[:-1])

    @pytest.mark.asyncio
    async def test_tool_call_chunk(self):
        """Test tool call fragments are relayed without content."""
        call = {"index": 0, "id": "call_1", "type": "function", "function": {"name": "f", "arguments": ""}}
        source = Source(StreamEvent(tool_calls=[call]), StreamEvent(finish_reason="tool_calls"))
        chunks = await collect(StreamTranslator("gpt-4o").translate(source()))

        assert chunks[0].choices[0].delta.tool_calls == [call]
        assert chunks[0].content is None
        assert chunks[-1].finish_reason == "tool_calls"


class TestSnapshotMode:
    """Test backends that stream whole-text-so-far snapshots."""

    @pytest.mark.asyncio
    async def test_deltas_computed_from_snapshots(self):
        """Test each chunk carries only the newly generated suffix."""
        source = Source(
            StreamEvent(content="你"),
            StreamEvent(content="你好"),
            StreamEvent(content="你好！"),
            StreamEvent(content="你好！", finish_reason="stop"),
        )
        chunks = await collect(StreamTranslator("qwen-plus", snapshot=True).translate(source()))

        assert [c.content for c in chunks[:-1]] == ["你", "好", "！"]
        assert contents(chunks) == "你好！"

    @pytest.mark.asyncio
    async def test_unchanged_snapshot_emits_nothing(self):
        """Test repeated snapshots do not produce empty chunks."""
        source = Source(
            StreamEvent(content="Hi"),
            StreamEvent(content="Hi"),
            StreamEvent(content="Hi there"),
        )
        chunks = await collect(StreamTranslator("qwen-plus", snapshot=True).translate(source()))

        assert [c.content for c in chunks] == ["Hi", " there", None]

    def test_delta_for(self):
        """Test delta computation against the running length."""
        translator = StreamTranslator("qwen-plus", snapshot=True)
        assert translator.delta_for("abc") == "abc"
        assert translator.delta_for("abcde") == "de"
        assert translator.delta_for("ab") == ""
        assert translator.session.text_length == 5


class TestCancellation:
    """Test cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_stops_chunks_and_closes_source(self):
        """Test no chunks follow a cancel and the source is released."""
        token = CancelToken()
        source = Source(*(StreamEvent(content=str(i)) for i in range(10)))
        chunks = []

        async for chunk in StreamTranslator("gpt-4o", cancel_token=token).translate(source()):
            chunks.append(chunk)
            if len(chunks) == 2:
                token.cancel()

        assert [c.content for c in chunks] == ["0", "1"]
        assert all(c.finish_reason is None for c in chunks)
        assert source.pulled == 2
        assert source.closed

    @pytest.mark.asyncio
    async def test_cancel_interrupts_pending_read(self):
        """Test a cancel lands while the source is waiting, not at its next event."""
        token = CancelToken()
        source = StalledSource(StreamEvent(content="first"))
        chunks = StreamTranslator("gpt-4o", cancel_token=token).translate(source())

        first = await chunks.__anext__()
        rest = asyncio.ensure_future(collect(chunks))
        for _ in range(3):
            await asyncio.sleep(0)
        token.cancel()

        assert await asyncio.wait_for(rest, timeout=1.0) == []
        assert first.content == "first"
        assert source.interrupted
        assert source.closed
        assert not source.release.is_set()

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self):
        """Test a token cancelled up front produces nothing."""
        token = CancelToken()
        token.cancel()
        source = Source(StreamEvent(content="x"))

        chunks = await collect(StreamTranslator("gpt-4o", cancel_token=token).translate(source()))

        assert chunks == []
        assert source.pulled == 0

    @pytest.mark.asyncio
    async def test_consumer_close_releases_source(self):
        """Test closing the chunk iterator early closes the source."""
        source = Source(*(StreamEvent(content=str(i)) for i in range(10)))
        chunks = StreamTranslator("gpt-4o").translate(source())

        first = await chunks.__anext__()
        await chunks.aclose()

        assert first.content == "0"
        assert source.closed

    @pytest.mark.asyncio
    async def test_token_wait(self):
        """Test waiting on an already cancelled token returns."""
        token = CancelToken()
        assert not token.cancelled
        token.cancel()
        await token.wait()
        assert token.cancelled


class TestSSE:
    """Test SSE parsing and encoding."""

    @pytest.mark.asyncio
    async def test_iter_sse(self):
        """Test event names, spacing variants and comments."""
        body = (
            ": keep-alive\n\n"
            "event: message_start\n"
            "data: {\"a\": 1}\n\n"
            "data:{\"b\": 2}\n\n"
            "id: 7\n"
            "data: [DONE]\n\n"
        )
        response = httpx.Response(200, content=body.encode())

        events = [item async for item in iter_sse(response)]

        assert events == [
            ("message_start", "{\"a\": 1}"),
            (None, "{\"b\": 2}"),
            (None, "[DONE]"),
        ]

    @pytest.mark.asyncio
    async def test_iter_sse_without_trailing_blank_line(self):
        """Test a final event without a terminating blank line is kept."""
        response = httpx.Response(200, content=b"data: last")
        assert [item async for item in iter_sse(response)] == [(None, "last")]

    def test_encode_sse(self):
        """Test one data event per payload, unicode kept."""
        encoded = encode_sse({"content": "héllo"})
        assert encoded.startswith("data: ")
        assert encoded.endswith("\n\n")
        assert json.loads(encoded[len("data: "):]) == {"content": "héllo"}
        assert "héllo" in encoded
