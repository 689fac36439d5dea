"""
Direct Anthropic API adapter.

Provides access to Anthropic's Claude Messages API.
"""

import logging
import json
from typing import Optional, Iterable, Dict, Any, AsyncIterator
import httpx

from ..core.interface import AbstractProvider
from ..core.errors import UpstreamError, raise_for_upstream
from ..core.streaming import StreamEvent, iter_sse
from ..models.request import ChatRequest
from ..models.response import ChatResponse, FinishReason, Usage, normalize_finish_reason

logger = logging.getLogger(__name__)


# Status codes for error events delivered inside an open stream
ANTHROPIC_ERROR_STATUS = {
    "invalid_request_error": 400,
    "authentication_error": 401,
    "permission_error": 403,
    "not_found_error": 404,
    "request_too_large": 413,
    "rate_limit_error": 429,
    "api_error": 500,
    "overloaded_error": 529,
}


class AnthropicAdapter(AbstractProvider):
    """
    Direct Anthropic API adapter.

    Connects directly to Anthropic's Claude API.
    """

    ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"
    ANTHROPIC_VERSION = "2023-06-01"

    FINISH_REASONS = {
        "end_turn": FinishReason.STOP.value,
        "stop_sequence": FinishReason.STOP.value,
        "pause_turn": FinishReason.STOP.value,
        "max_tokens": FinishReason.LENGTH.value,
        "tool_use": FinishReason.TOOL_CALLS.value,
        "refusal": FinishReason.CONTENT_FILTER.value,
    }

    def __init__(
        self,
        name: str,
        api_key: str,
        supported_models: Iterable[str],
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        """
        Initialize Anthropic adapter.

        Args:
            name: Backend name
            api_key: Anthropic API key
            supported_models: Claude model identifiers
            base_url: Anthropic API URL (defaults to api.anthropic.com)
            http_client: Shared HTTP client
            timeout: Request timeout in seconds
        """
        super().__init__(name, supported_models, http_client=http_client, timeout=timeout)
        self._base_url = (base_url or self.ANTHROPIC_BASE_URL).rstrip("/")
        self._api_key = api_key

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
            "anthropic-version": self.ANTHROPIC_VERSION,
        }

    def _messages_url(self, request: ChatRequest, stream: bool) -> str:
        return f"{self._base_url}/messages"

    def _build_payload(self, request: ChatRequest, stream: bool) -> Dict[str, Any]:
        payload = request.to_anthropic_format()
        payload["stream"] = stream
        return payload

    async def _complete(self, request: ChatRequest) -> ChatResponse:
        """Create a chat completion via Anthropic API."""
        response = await self.client.post(
            self._messages_url(request, stream=False),
            json=self._build_payload(request, stream=False),
            headers=self._headers(),
            timeout=self._timeout,
        )
        await raise_for_upstream(response, self._name)

        data = response.json()
        if data.get("type") == "error":
            raise self._stream_error(data)

        result = ChatResponse.from_anthropic(data, finish_reasons=self.FINISH_REASONS)
        if not result.model:
            result.model = request.model
        return result

    async def _stream_events(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Stream a chat completion via Anthropic API."""
        async with self.client.stream(
            "POST",
            self._messages_url(request, stream=True),
            json=self._build_payload(request, stream=True),
            headers=self._headers(),
            timeout=self._timeout,
        ) as response:
            await raise_for_upstream(response, self._name)

            state = {"input_tokens": 0, "tool_index": {}}
            async for _, data in iter_sse(response):
                try:
                    event = json.loads(data)
                except json.JSONDecodeError:
                    continue

                parsed = self._parse_stream_event(event, state)
                if parsed is not None:
                    yield parsed

    def _parse_stream_event(
        self,
        event: Dict[str, Any],
        state: Dict[str, Any],
    ) -> Optional[StreamEvent]:
        """Parse an Anthropic streaming event into a StreamEvent."""
        event_type = event.get("type")

        if event_type == "message_start":
            message = event.get("message", {})
            state["input_tokens"] = message.get("usage", {}).get("input_tokens", 0)
            return StreamEvent(
                id=message.get("id"),
                model=message.get("model"),
                role="assistant",
            )

        if event_type == "content_block_start":
            block = event.get("content_block", {})
            if block.get("type") == "tool_use":
                tool_index = len(state["tool_index"])
                state["tool_index"][event.get("index", 0)] = tool_index
                return StreamEvent(tool_calls=[{
                    "index": tool_index,
                    "id": block.get("id", ""),
                    "type": "function",
                    "function": {"name": block.get("name", ""), "arguments": ""},
                }])
            if block.get("type") == "text" and block.get("text"):
                return StreamEvent(content=block["text"])

        elif event_type == "content_block_delta":
            delta = event.get("delta", {})
            if delta.get("type") == "text_delta":
                return StreamEvent(content=delta.get("text"))
            if delta.get("type") == "input_json_delta":
                tool_index = state["tool_index"].get(event.get("index", 0), 0)
                return StreamEvent(tool_calls=[{
                    "index": tool_index,
                    "function": {"arguments": delta.get("partial_json", "")},
                }])

        elif event_type == "message_delta":
            stop_reason = event.get("delta", {}).get("stop_reason")
            if stop_reason:
                output_tokens = event.get("usage", {}).get("output_tokens", 0)
                return StreamEvent(
                    finish_reason=normalize_finish_reason(stop_reason, self.FINISH_REASONS),
                    usage=Usage.of(state["input_tokens"], output_tokens),
                )

        elif event_type == "message_stop":
            return StreamEvent(finish_reason=FinishReason.STOP.value)

        elif event_type == "error":
            raise self._stream_error(event)

        return None

    def _stream_error(self, event: Dict[str, Any]) -> UpstreamError:
        error = event.get("error", {})
        return UpstreamError(
            ANTHROPIC_ERROR_STATUS.get(error.get("type"), 502),
            error.get("message") or "Anthropic stream error",
            provider=self._name,
        )
