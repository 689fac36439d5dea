"""
Google Gemini Gateway Adapter.

Provides integration with the Gemini API (Google AI Studio keys).
"""
import json
import logging
from typing import AsyncIterator, Dict, Iterable, List, Optional, Any

import httpx

from ..core.interface import AbstractProvider
from ..core.errors import UpstreamError, extract_error_message, raise_for_upstream
from ..core.streaming import StreamEvent, iter_sse
from ..models.request import ChatRequest
from ..models.response import ChatResponse, FinishReason, Usage, normalize_finish_reason

logger = logging.getLogger(__name__)


class GoogleAdapter(AbstractProvider):
    """
    Google Gemini adapter.

    Gemini uses "model" instead of "assistant" for the model's turns and
    takes system prompts as a separate systemInstruction.
    """

    GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

    FINISH_REASONS = {
        "STOP": FinishReason.STOP.value,
        "MAX_TOKENS": FinishReason.LENGTH.value,
        "SAFETY": FinishReason.CONTENT_FILTER.value,
        "RECITATION": FinishReason.CONTENT_FILTER.value,
        "BLOCKLIST": FinishReason.CONTENT_FILTER.value,
        "PROHIBITED_CONTENT": FinishReason.CONTENT_FILTER.value,
        "SPII": FinishReason.CONTENT_FILTER.value,
        "IMAGE_SAFETY": FinishReason.CONTENT_FILTER.value,
        "FINISH_REASON_UNSPECIFIED": FinishReason.STOP.value,
        "OTHER": FinishReason.STOP.value,
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
        Initialize Gemini adapter.

        Args:
            name: Backend name
            api_key: Gemini API key
            supported_models: Gemini model identifiers
            base_url: API root (defaults to generativelanguage.googleapis.com/v1beta)
            http_client: Shared HTTP client
            timeout: Request timeout in seconds
        """
        super().__init__(name, supported_models, http_client=http_client, timeout=timeout)
        self._base_url = (base_url or self.GEMINI_BASE_URL).rstrip("/")
        self._api_key = api_key

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self._api_key,
        }

    def _get_model_endpoint(self, model: str) -> str:
        """Get full model endpoint URL."""
        return f"{self._base_url}/models/{model}"

    def _build_gemini_payload(self, request: ChatRequest) -> Dict[str, Any]:
        """Build payload for Gemini models."""
        contents = []
        system_parts = []

        for msg in request.messages:
            if msg.is_system:
                system_parts.append({"text": msg.text()})
            elif msg.role == "tool":
                contents.append({
                    "role": "user",
                    "parts": [{
                        "functionResponse": {
                            "name": msg.name or msg.tool_call_id or "tool",
                            "response": {"content": msg.text()},
                        }
                    }],
                })
            else:
                role = "user" if msg.role == "user" else "model"
                parts = [{"text": msg.text()}] if msg.text() else []
                for call in msg.tool_calls or []:
                    function = call.get("function", {})
                    parts.append({
                        "functionCall": {
                            "name": function.get("name", ""),
                            "args": json.loads(function.get("arguments") or "{}"),
                        }
                    })
                contents.append({"role": role, "parts": parts or [{"text": ""}]})

        payload = {
            "contents": contents,
            "generationConfig": {},
        }

        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}

        if request.temperature is not None:
            payload["generationConfig"]["temperature"] = request.temperature
        if request.max_tokens is not None:
            payload["generationConfig"]["maxOutputTokens"] = request.max_tokens
        if request.top_p is not None:
            payload["generationConfig"]["topP"] = request.top_p
        if request.seed is not None:
            payload["generationConfig"]["seed"] = request.seed
        if request.stop_sequences:
            payload["generationConfig"]["stopSequences"] = request.stop_sequences

        if request.tools:
            payload["tools"] = [{
                "functionDeclarations": [
                    t.function.model_dump(exclude_none=True) for t in request.tools
                ]
            }]

        return payload

    def _parse_candidate(self, data: Dict[str, Any]) -> StreamEvent:
        """Extract text, tool calls and finish reason from one response."""
        candidates = data.get("candidates") or []
        usage_metadata = data.get("usageMetadata")
        usage = Usage(
            prompt_tokens=usage_metadata.get("promptTokenCount", 0),
            completion_tokens=usage_metadata.get("candidatesTokenCount", 0),
            total_tokens=usage_metadata.get("totalTokenCount", 0),
        ) if usage_metadata else None

        if not candidates:
            # Prompt rejected before generation
            blocked = data.get("promptFeedback", {}).get("blockReason")
            return StreamEvent(
                id=data.get("responseId"),
                finish_reason=FinishReason.CONTENT_FILTER.value if blocked else None,
                usage=usage,
            )

        candidate = candidates[0]
        parts = candidate.get("content", {}).get("parts", [])

        text_content = ""
        tool_calls = []

        for part in parts:
            if "text" in part and not part.get("thought"):
                text_content += part["text"]
            elif "functionCall" in part:
                call = part["functionCall"]
                tool_calls.append({
                    "index": len(tool_calls),
                    "id": f"call_{call.get('name', '')}_{len(tool_calls)}",
                    "type": "function",
                    "function": {
                        "name": call.get("name", ""),
                        "arguments": json.dumps(call.get("args", {})),
                    },
                })

        finish_reason = normalize_finish_reason(
            candidate.get("finishReason"), self.FINISH_REASONS
        )
        if finish_reason == FinishReason.STOP.value and tool_calls:
            finish_reason = FinishReason.TOOL_CALLS.value

        return StreamEvent(
            id=data.get("responseId"),
            model=data.get("modelVersion"),
            content=text_content,
            tool_calls=tool_calls or None,
            finish_reason=finish_reason,
            usage=usage,
        )

    async def _complete(self, request: ChatRequest) -> ChatResponse:
        """Execute chat completion request."""
        response = await self.client.post(
            f"{self._get_model_endpoint(request.model)}:generateContent",
            json=self._build_gemini_payload(request),
            headers=self._headers(),
            timeout=self._timeout,
        )
        await raise_for_upstream(response, self._name)

        event = self._parse_candidate(response.json())
        tool_calls = [
            {key: value for key, value in call.items() if key != "index"}
            for call in event.tool_calls or []
        ]
        return ChatResponse.create(
            id=event.id,
            model=request.model,
            content=event.content if event.content or not tool_calls else None,
            tool_calls=tool_calls,
            finish_reason=event.finish_reason,
            usage=event.usage,
        )

    async def _stream_events(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Execute streaming chat completion request."""
        async with self.client.stream(
            "POST",
            f"{self._get_model_endpoint(request.model)}:streamGenerateContent",
            params={"alt": "sse"},
            json=self._build_gemini_payload(request),
            headers=self._headers(),
            timeout=self._timeout,
        ) as response:
            await raise_for_upstream(response, self._name)

            async for _, data in iter_sse(response):
                try:
                    chunk = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if "error" in chunk:
                    error = chunk["error"]
                    status = error.get("code") if isinstance(error, dict) else None
                    raise UpstreamError(
                        status if isinstance(status, int) else 502,
                        extract_error_message(chunk),
                        provider=self._name,
                    )
                event = self._parse_candidate(chunk)
                # Gemini reports the served model version, callers asked for the alias
                event.model = request.model
                yield event
