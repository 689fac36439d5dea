"""
Ollama Gateway Adapter.

Provides integration with local Ollama servers for running
open-source models like Llama, Mistral, Qwen, etc.
"""
import json
import logging
from typing import AsyncIterator, Dict, Iterable, Optional, Any

import httpx

from ..core.interface import AbstractProvider
from ..core.errors import UpstreamError, raise_for_upstream
from ..core.streaming import StreamEvent
from ..models.request import ChatRequest
from ..models.response import ChatResponse, FinishReason, Usage, normalize_finish_reason

logger = logging.getLogger(__name__)


class OllamaAdapter(AbstractProvider):
    """
    Ollama adapter for local LLM inference.

    The served models are whatever the operator lists in configuration;
    no API key is involved.
    """

    OLLAMA_BASE_URL = "http://localhost:11434"

    FINISH_REASONS = {
        "stop": FinishReason.STOP.value,
        "length": FinishReason.LENGTH.value,
        "load": FinishReason.STOP.value,
        "unload": FinishReason.STOP.value,
    }

    def __init__(
        self,
        name: str,
        supported_models: Iterable[str],
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
        keep_alive: Optional[str] = "5m",
        num_ctx: Optional[int] = None,
    ):
        """
        Initialize Ollama adapter.

        Args:
            name: Backend name
            supported_models: Model tags served by the Ollama instance
            base_url: Ollama server URL (default: http://localhost:11434)
            http_client: Shared HTTP client
            timeout: Request timeout in seconds (longer for local inference)
            keep_alive: How long to keep model loaded (e.g., "5m", "1h")
            num_ctx: Context window size override
        """
        super().__init__(name, supported_models, http_client=http_client, timeout=timeout)
        self._base_url = (base_url or self.OLLAMA_BASE_URL).rstrip("/")
        self._keep_alive = keep_alive
        self._num_ctx = num_ctx

    def _build_options(self, request: ChatRequest) -> Dict[str, Any]:
        """Build Ollama options from request."""
        options = {}

        if request.temperature is not None:
            options["temperature"] = request.temperature
        if request.top_p is not None:
            options["top_p"] = request.top_p
        if request.max_tokens is not None:
            options["num_predict"] = request.max_tokens
        if request.seed is not None:
            options["seed"] = request.seed
        if request.presence_penalty is not None:
            options["presence_penalty"] = request.presence_penalty
        if request.frequency_penalty is not None:
            options["frequency_penalty"] = request.frequency_penalty
        if self._num_ctx is not None:
            options["num_ctx"] = self._num_ctx
        if request.stop_sequences:
            options["stop"] = request.stop_sequences

        return options

    def _build_payload(self, request: ChatRequest, stream: bool) -> Dict[str, Any]:
        messages = []
        for msg in request.messages:
            message = {
                "role": "system" if msg.is_system else msg.role,
                "content": msg.text(),
            }
            # Base64 images for multimodal models like llava
            images = [
                part["image_url"]["url"].split(";base64,", 1)[1]
                for part in (msg.content if isinstance(msg.content, list) else [])
                if part.get("type") == "image_url"
                and ";base64," in part.get("image_url", {}).get("url", "")
            ]
            if images:
                message["images"] = images
            messages.append(message)

        payload = {
            "model": request.model,
            "messages": messages,
            "stream": stream,
            "options": self._build_options(request),
        }

        if self._keep_alive:
            payload["keep_alive"] = self._keep_alive

        return payload

    async def _complete(self, request: ChatRequest) -> ChatResponse:
        """Execute chat completion request."""
        response = await self.client.post(
            f"{self._base_url}/api/chat",
            json=self._build_payload(request, stream=False),
            timeout=self._timeout,
        )
        await raise_for_upstream(response, self._name)

        data = response.json()
        return self._parse_response(data, request.model)

    async def _stream_events(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Execute streaming chat completion request."""
        async with self.client.stream(
            "POST",
            f"{self._base_url}/api/chat",
            json=self._build_payload(request, stream=True),
            timeout=self._timeout,
        ) as response:
            await raise_for_upstream(response, self._name)

            async for line in response.aiter_lines():
                if not line:
                    continue
                try:
                    chunk = json.loads(line)
                except json.JSONDecodeError:
                    continue

                yield self._parse_stream_chunk(chunk)

                # Check if done
                if chunk.get("done", False):
                    break

    def _parse_usage(self, data: Dict[str, Any]) -> Usage:
        return Usage.of(
            data.get("prompt_eval_count", 0),
            data.get("eval_count", 0),
        )

    def _parse_response(self, data: Dict[str, Any], model: str) -> ChatResponse:
        """Parse Ollama response to ChatResponse."""
        if data.get("error"):
            raise UpstreamError(502, data["error"], provider=self._name)

        message = data.get("message", {})
        return ChatResponse.create(
            model=model,
            content=message.get("content", ""),
            finish_reason=normalize_finish_reason(
                data.get("done_reason") or "stop", self.FINISH_REASONS
            ),
            usage=self._parse_usage(data),
        )

    def _parse_stream_chunk(self, chunk: Dict[str, Any]) -> StreamEvent:
        """Parse streaming chunk to StreamEvent."""
        if chunk.get("error"):
            raise UpstreamError(502, chunk["error"], provider=self._name)

        message = chunk.get("message", {})
        done = chunk.get("done", False)

        return StreamEvent(
            role=message.get("role"),
            content=message.get("content", ""),
            finish_reason=normalize_finish_reason(
                chunk.get("done_reason") or "stop", self.FINISH_REASONS
            ) if done else None,
            # Final chunk includes usage
            usage=self._parse_usage(chunk) if done else None,
        )
