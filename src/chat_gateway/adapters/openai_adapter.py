"""
OpenAI-compatible API adapter.

Serves OpenAI itself and every backend that speaks the same
/chat/completions protocol (DeepSeek, Moonshot, Groq, xAI, ...)
by varying the base URL and key.
"""

import logging
import json
from typing import Optional, Iterable, Dict, Any, AsyncIterator
import httpx

from ..core.interface import AbstractProvider
from ..core.errors import UpstreamError, extract_error_message, raise_for_upstream
from ..core.streaming import StreamEvent, iter_sse
from ..models.request import ChatRequest
from ..models.response import ChatResponse, Usage, normalize_finish_reason

logger = logging.getLogger(__name__)


class OpenAIAdapter(AbstractProvider):
    """
    Adapter for OpenAI-compatible chat completion APIs.

    Requests are forwarded almost verbatim; responses are already in
    the canonical shape and only need finish reason normalization.
    """

    OPENAI_BASE_URL = "https://api.openai.com/v1"

    # Vendor-specific finish reasons seen on compatible APIs
    FINISH_REASONS = {
        "eos": "stop",
        "end_turn": "stop",
        "max_tokens": "length",
        "model_length": "length",
        "insufficient_system_resource": "length",
        "sensitive": "content_filter",
    }

    def __init__(
        self,
        name: str,
        api_key: str,
        supported_models: Iterable[str],
        base_url: Optional[str] = None,
        organization: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        """
        Initialize OpenAI-compatible adapter.

        Args:
            name: Backend name (e.g. "openai", "deepseek")
            api_key: Bearer token for the backend
            supported_models: Model identifiers served by this backend
            base_url: API root including the version segment
            organization: OpenAI organization ID
            http_client: Shared HTTP client
            timeout: Request timeout in seconds
        """
        super().__init__(name, supported_models, http_client=http_client, timeout=timeout)
        self._base_url = (base_url or self.OPENAI_BASE_URL).rstrip("/")
        self._api_key = api_key
        self._organization = organization

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }
        if self._organization:
            headers["OpenAI-Organization"] = self._organization
        return headers

    def _chat_url(self, request: ChatRequest) -> str:
        return f"{self._base_url}/chat/completions"

    def _build_payload(self, request: ChatRequest, stream: bool) -> Dict[str, Any]:
        payload = request.to_openai_format()
        payload["stream"] = stream
        if not stream:
            payload.pop("stream_options", None)
        return payload

    async def _complete(self, request: ChatRequest) -> ChatResponse:
        """Create a chat completion via the OpenAI-compatible API."""
        response = await self.client.post(
            self._chat_url(request),
            json=self._build_payload(request, stream=False),
            headers=self._headers(),
            timeout=self._timeout,
        )
        await raise_for_upstream(response, self._name)

        data = response.json()
        if "error" in data and not data.get("choices"):
            raise UpstreamError(502, extract_error_message(data), provider=self._name)
        return ChatResponse.from_openai(data, finish_reasons=self.FINISH_REASONS)

    async def _stream_events(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Stream a chat completion via the OpenAI-compatible API."""
        async with self.client.stream(
            "POST",
            self._chat_url(request),
            json=self._build_payload(request, stream=True),
            headers=self._headers(),
            timeout=self._timeout,
        ) as response:
            await raise_for_upstream(response, self._name)

            async for _, data in iter_sse(response):
                if data == "[DONE]":
                    break
                try:
                    chunk = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning(f"{self._name}: skipping undecodable stream line")
                    continue

                event = self._parse_stream_chunk(chunk)
                if event is not None:
                    yield event

    def _parse_stream_chunk(self, chunk: Dict[str, Any]) -> Optional[StreamEvent]:
        """Parse a streaming chunk into a StreamEvent."""
        if "error" in chunk:
            error = chunk["error"]
            status = error.get("code") if isinstance(error, dict) else None
            raise UpstreamError(
                status if isinstance(status, int) else 502,
                extract_error_message(chunk),
                provider=self._name,
            )

        choices = chunk.get("choices") or []
        if not choices:
            # Usage-only or content filter frames
            return None

        choice = choices[0]
        delta = choice.get("delta") or {}
        usage_data = chunk.get("usage")

        return StreamEvent(
            id=chunk.get("id"),
            model=chunk.get("model"),
            role=delta.get("role"),
            content=delta.get("content"),
            tool_calls=delta.get("tool_calls"),
            finish_reason=normalize_finish_reason(
                choice.get("finish_reason"), self.FINISH_REASONS
            ),
            usage=Usage(
                prompt_tokens=usage_data.get("prompt_tokens", 0),
                completion_tokens=usage_data.get("completion_tokens", 0),
                total_tokens=usage_data.get("total_tokens", 0),
            ) if usage_data else None,
        )
