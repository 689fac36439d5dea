"""
Alibaba Cloud Bailian (DashScope) adapter.

The native DashScope text-generation stream reports the whole message
generated so far in every event, so this adapter runs the stream
translator in snapshot mode.
"""
import json
import logging
from typing import AsyncIterator, Dict, Iterable, Optional, Any

import httpx

from ..core.interface import AbstractProvider
from ..core.errors import UpstreamError, extract_error_message, raise_for_upstream
from ..core.streaming import StreamEvent, iter_sse
from ..models.request import ChatRequest
from ..models.response import ChatResponse, Usage, normalize_finish_reason

logger = logging.getLogger(__name__)


class BailianAdapter(AbstractProvider):
    """Qwen models through the DashScope native API."""

    DASHSCOPE_BASE_URL = "https://dashscope.aliyuncs.com/api/v1"
    GENERATION_PATH = "/services/aigc/text-generation/generation"

    snapshot_stream = True

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
        self._base_url = (base_url or self.DASHSCOPE_BASE_URL).rstrip("/")
        self._api_key = api_key

    def _headers(self, stream: bool) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }
        if stream:
            headers["X-DashScope-SSE"] = "enable"
            headers["Accept"] = "text/event-stream"
        return headers

    def _build_payload(self, request: ChatRequest) -> Dict[str, Any]:
        parameters: Dict[str, Any] = {"result_format": "message"}

        if request.temperature is not None:
            parameters["temperature"] = request.temperature
        if request.top_p is not None:
            parameters["top_p"] = request.top_p
        if request.max_tokens is not None:
            parameters["max_tokens"] = request.max_tokens
        if request.seed is not None:
            parameters["seed"] = request.seed
        if request.stop_sequences:
            parameters["stop"] = request.stop_sequences
        if request.presence_penalty is not None:
            parameters["presence_penalty"] = request.presence_penalty

        return {
            "model": request.model,
            "input": {
                "messages": [
                    {"role": "system" if m.is_system else m.role, "content": m.text()}
                    for m in request.messages
                ],
            },
            "parameters": parameters,
        }

    def _parse_output(self, data: Dict[str, Any]) -> StreamEvent:
        """Parse one DashScope generation result."""
        if "output" not in data and data.get("code"):
            raise UpstreamError(
                400 if data.get("code") == "InvalidParameter" else 502,
                extract_error_message(data),
                provider=self._name,
            )

        output = data.get("output") or {}
        choices = output.get("choices") or []
        if choices:
            choice = choices[0]
            content = (choice.get("message") or {}).get("content")
            finish_reason = choice.get("finish_reason")
        else:
            # result_format=text
            content = output.get("text")
            finish_reason = output.get("finish_reason")

        # DashScope spells "not finished yet" as the string "null"
        if finish_reason in ("null", ""):
            finish_reason = None

        usage_data = data.get("usage")
        usage = Usage.of(
            usage_data.get("input_tokens", 0),
            usage_data.get("output_tokens", 0),
        ) if usage_data else None

        return StreamEvent(
            id=data.get("request_id"),
            content=content,
            finish_reason=normalize_finish_reason(finish_reason),
            usage=usage,
        )

    async def _complete(self, request: ChatRequest) -> ChatResponse:
        """Execute chat completion request."""
        response = await self.client.post(
            f"{self._base_url}{self.GENERATION_PATH}",
            json=self._build_payload(request),
            headers=self._headers(stream=False),
            timeout=self._timeout,
        )
        await raise_for_upstream(response, self._name)

        event = self._parse_output(response.json())
        return ChatResponse.create(
            id=event.id,
            model=request.model,
            content=event.content or "",
            finish_reason=event.finish_reason,
            usage=event.usage,
        )

    async def _stream_events(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Execute streaming chat completion request."""
        async with self.client.stream(
            "POST",
            f"{self._base_url}{self.GENERATION_PATH}",
            json=self._build_payload(request),
            headers=self._headers(stream=True),
            timeout=self._timeout,
        ) as response:
            await raise_for_upstream(response, self._name)

            async for event_name, data in iter_sse(response):
                try:
                    result = json.loads(data)
                except json.JSONDecodeError:
                    continue

                if event_name == "error":
                    raise UpstreamError(502, extract_error_message(result), provider=self._name)
                yield self._parse_output(result)
