"""
Cohere Gateway Adapter.

Uses the Cohere v2 Chat API, whose message roles already match the
canonical ones but whose stream is a sequence of typed events.
"""
import json
import logging
from typing import AsyncIterator, Dict, Iterable, Optional, Any

import httpx

from ..core.interface import AbstractProvider
from ..core.errors import UpstreamError, extract_error_message, raise_for_upstream
from ..core.streaming import StreamEvent, iter_sse
from ..models.request import ChatRequest
from ..models.response import ChatResponse, FinishReason, Usage, normalize_finish_reason

logger = logging.getLogger(__name__)


class CohereAdapter(AbstractProvider):
    """Cohere Command models."""

    COHERE_BASE_URL = "https://api.cohere.com/v2"

    FINISH_REASONS = {
        "COMPLETE": FinishReason.STOP.value,
        "STOP_SEQUENCE": FinishReason.STOP.value,
        "MAX_TOKENS": FinishReason.LENGTH.value,
        "TOOL_CALL": FinishReason.TOOL_CALLS.value,
        "ERROR_TOXIC": FinishReason.CONTENT_FILTER.value,
        "ERROR": FinishReason.STOP.value,
        "ERROR_LIMIT": FinishReason.LENGTH.value,
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
        super().__init__(name, supported_models, http_client=http_client, timeout=timeout)
        self._base_url = (base_url or self.COHERE_BASE_URL).rstrip("/")
        self._api_key = api_key

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }

    def _build_payload(self, request: ChatRequest, stream: bool) -> Dict[str, Any]:
        messages = []
        for msg in request.messages:
            role = "system" if msg.is_system else msg.role
            if role == "tool":
                messages.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id or "",
                    "content": msg.text(),
                })
            else:
                messages.append({"role": role, "content": msg.text()})

        payload = {
            "model": request.model,
            "messages": messages,
            "stream": stream,
        }

        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if request.top_p is not None:
            # Cohere calls nucleus sampling "p"
            payload["p"] = request.top_p
        if request.seed is not None:
            payload["seed"] = request.seed
        if request.stop_sequences:
            payload["stop_sequences"] = request.stop_sequences
        if request.presence_penalty is not None:
            payload["presence_penalty"] = request.presence_penalty
        if request.frequency_penalty is not None:
            payload["frequency_penalty"] = request.frequency_penalty

        return payload

    @staticmethod
    def _parse_usage(usage_data: Optional[Dict[str, Any]]) -> Optional[Usage]:
        if not usage_data:
            return None
        tokens = usage_data.get("tokens") or usage_data.get("billed_units") or {}
        return Usage.of(
            int(tokens.get("input_tokens", 0)),
            int(tokens.get("output_tokens", 0)),
        )

    async def _complete(self, request: ChatRequest) -> ChatResponse:
        """Execute chat completion request."""
        response = await self.client.post(
            f"{self._base_url}/chat",
            json=self._build_payload(request, stream=False),
            headers=self._headers(),
            timeout=self._timeout,
        )
        await raise_for_upstream(response, self._name)

        data = response.json()
        message = data.get("message", {})
        content = "".join(
            block.get("text", "")
            for block in message.get("content") or []
            if block.get("type") == "text"
        )

        return ChatResponse.create(
            id=data.get("id"),
            model=request.model,
            content=content,
            finish_reason=normalize_finish_reason(
                data.get("finish_reason") or "COMPLETE", self.FINISH_REASONS
            ),
            usage=self._parse_usage(data.get("usage")),
        )

    async def _stream_events(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Execute streaming chat completion request."""
        async with self.client.stream(
            "POST",
            f"{self._base_url}/chat",
            json=self._build_payload(request, stream=True),
            headers=self._headers(),
            timeout=self._timeout,
        ) as response:
            await raise_for_upstream(response, self._name)

            async for event_name, data in iter_sse(response):
                try:
                    event = json.loads(data)
                except json.JSONDecodeError:
                    continue

                event_type = event.get("type") or event_name
                delta = event.get("delta") or {}

                if event_type == "message-start":
                    yield StreamEvent(id=event.get("id"), role="assistant")
                elif event_type == "content-delta":
                    text = delta.get("message", {}).get("content", {}).get("text")
                    yield StreamEvent(content=text)
                elif event_type == "message-end":
                    yield StreamEvent(
                        finish_reason=normalize_finish_reason(
                            delta.get("finish_reason") or "COMPLETE", self.FINISH_REASONS
                        ),
                        usage=self._parse_usage(delta.get("usage")),
                    )
                elif event_type == "error" or ("message" in event and event_type is None):
                    raise UpstreamError(502, extract_error_message(event), provider=self._name)
