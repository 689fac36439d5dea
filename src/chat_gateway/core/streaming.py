"""
Stream translation shared by all adapters.

Adapters turn their backend's native stream into StreamEvent values;
StreamTranslator turns those into canonical chat.completion.chunk
objects with a stable id, incremental deltas and exactly one
terminal chunk.
"""

import asyncio
import json
import logging
import time
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from ..models.response import (
    ChatCompletionChunk,
    ChunkChoice,
    Delta,
    FinishReason,
    Usage,
    new_completion_id,
)

logger = logging.getLogger(__name__)

# Marks an exhausted or abandoned event source
_END = object()


async def _next_or_end(events: AsyncIterator[Any]) -> Any:
    try:
        return await events.__anext__()
    except StopAsyncIteration:
        return _END


class CancelToken:
    """Cooperative cancellation flag for one streaming request."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class StreamEvent:
    """
    One native stream event, normalized by an adapter.

    content is either an increment or, for snapshot backends, the whole
    text generated so far. finish_reason is already canonical.
    """
    content: Optional[str] = None
    role: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    finish_reason: Optional[str] = None
    id: Optional[str] = None
    model: Optional[str] = None
    usage: Optional[Usage] = None


@dataclass
class StreamSession:
    """Per-request translation state."""
    chunk_id: str
    model: str
    created: int = field(default_factory=lambda: int(time.time()))
    emitted: int = 0
    text_length: int = 0


class StreamTranslator:
    """
    Translate StreamEvents into canonical chunks.

    Args:
        model: Requested model, used when the backend does not report one
        snapshot: Backend reports whole-text-so-far instead of increments
        cancel_token: Checked before pulling and after yielding each chunk
    """

    def __init__(
        self,
        model: str,
        snapshot: bool = False,
        cancel_token: Optional[CancelToken] = None,
    ):
        self._model = model
        self._snapshot = snapshot
        self._cancel_token = cancel_token
        self.session: Optional[StreamSession] = None

    @property
    def cancelled(self) -> bool:
        return self._cancel_token is not None and self._cancel_token.cancelled

    def _open(self, event: Optional[StreamEvent] = None) -> StreamSession:
        if self.session is None:
            self.session = StreamSession(
                chunk_id=(event.id if event and event.id else new_completion_id()),
                model=(event.model if event and event.model else self._model),
            )
        return self.session

    def delta_for(self, content: Optional[str]) -> str:
        """Return the newly generated text carried by an event."""
        session = self._open()
        if not content:
            return ""
        if not self._snapshot:
            session.text_length += len(content)
            return content
        if len(content) <= session.text_length:
            return ""
        delta = content[session.text_length:]
        session.text_length = len(content)
        return delta

    def _chunk(
        self,
        delta: Delta,
        finish_reason: Optional[str] = None,
        usage: Optional[Usage] = None,
    ) -> ChatCompletionChunk:
        session = self._open()
        if session.emitted == 0 and finish_reason is None:
            delta.role = "assistant"
        session.emitted += 1
        return ChatCompletionChunk(
            id=session.chunk_id,
            created=session.created,
            model=session.model,
            choices=[ChunkChoice(index=0, delta=delta, finish_reason=finish_reason)],
            usage=usage,
        )

    async def _pull(self, events: AsyncIterator[StreamEvent]) -> Any:
        """
        Wait for the next event or for cancellation, whichever comes first.

        A read still pending at cancellation is cancelled, so a backend
        that has gone quiet does not hold the stream open.
        """
        if self._cancel_token is None:
            return await _next_or_end(events)

        pull = asyncio.ensure_future(_next_or_end(events))
        cancelled = asyncio.ensure_future(self._cancel_token.wait())
        try:
            await asyncio.wait({pull, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            if not pull.done():
                pull.cancel()
                with suppress(asyncio.CancelledError):
                    await pull

        if pull.cancelled():
            return _END
        return pull.result()

    async def translate(
        self, events: AsyncIterator[StreamEvent]
    ) -> AsyncIterator[ChatCompletionChunk]:
        """Consume native events and yield canonical chunks."""
        finish_reason = None
        usage = None

        try:
            if self.cancelled:
                return

            while True:
                event = await self._pull(events)
                if event is _END or self.cancelled:
                    break

                session = self._open(event)
                if event.usage is not None:
                    usage = event.usage

                content = self.delta_for(event.content)
                announce = event.role is not None and session.emitted == 0
                if content or event.tool_calls or announce:
                    yield self._chunk(Delta(
                        content=content or None,
                        tool_calls=event.tool_calls,
                    ))
                    if self.cancelled:
                        break

                if event.finish_reason is not None:
                    finish_reason = event.finish_reason
                    break

            if self.cancelled:
                logger.debug(f"Stream {self._open().chunk_id} cancelled by caller")
                return

            # The terminal delta stays empty, so the role goes out on its own
            if self._open().emitted == 0:
                yield self._chunk(Delta())
                if self.cancelled:
                    return

            yield self._chunk(
                Delta(),
                finish_reason=finish_reason or FinishReason.STOP.value,
                usage=usage,
            )
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()


async def iter_sse(response: httpx.Response) -> AsyncIterator[Tuple[Optional[str], str]]:
    """
    Parse a Server-Sent Events body into (event, data) pairs.

    Accepts "data:" with or without a following space; comment lines
    and unrelated fields are skipped.
    """
    event_name = None
    data_lines: List[str] = []

    async for line in response.aiter_lines():
        if not line:
            if data_lines:
                yield event_name, "\n".join(data_lines)
            event_name = None
            data_lines = []
            continue

        if line.startswith(":"):
            continue

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            event_name = value
        elif name == "data":
            data_lines.append(value)

    if data_lines:
        yield event_name, "\n".join(data_lines)


def encode_sse(payload: Dict[str, Any]) -> str:
    """Encode one SSE data event."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"
