"""
Claude on Google Vertex AI adapter.

Same Messages protocol as the direct Anthropic API, served through
Vertex AI's rawPredict endpoints with a Google access token.
"""

from typing import Any, Dict, Iterable, Optional

import httpx

from .anthropic_adapter import AnthropicAdapter
from ..models.request import ChatRequest


class AnthropicVertexAdapter(AnthropicAdapter):
    """Anthropic models from the Vertex AI Model Garden."""

    VERTEX_ANTHROPIC_VERSION = "vertex-2023-10-16"

    def __init__(
        self,
        name: str,
        project_id: str,
        region: str,
        access_token: str,
        supported_models: Iterable[str],
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        """
        Initialize Vertex AI Anthropic adapter.

        Args:
            name: Backend name
            project_id: Google Cloud project ID
            region: Vertex AI region (e.g., us-east5)
            access_token: OAuth access token for the project
            supported_models: Vertex model identifiers (e.g., claude-3-5-haiku@20241022)
            http_client: Shared HTTP client
            timeout: Request timeout in seconds
        """
        super().__init__(
            name,
            api_key=access_token,
            supported_models=supported_models,
            base_url=self._get_base_url(region),
            http_client=http_client,
            timeout=timeout,
        )
        self._project_id = project_id
        self._region = region

    @staticmethod
    def _get_base_url(region: str) -> str:
        """Get Vertex AI API base URL."""
        host = "aiplatform.googleapis.com" if region == "global" else f"{region}-aiplatform.googleapis.com"
        return f"https://{host}/v1"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }

    def _messages_url(self, request: ChatRequest, stream: bool) -> str:
        method = "streamRawPredict" if stream else "rawPredict"
        return (
            f"{self._base_url}/projects/{self._project_id}/locations/{self._region}/"
            f"publishers/anthropic/models/{request.model}:{method}"
        )

    def _build_payload(self, request: ChatRequest, stream: bool) -> Dict[str, Any]:
        payload = super()._build_payload(request, stream)
        # The model is addressed by URL on Vertex
        payload.pop("model", None)
        payload["anthropic_version"] = self.VERTEX_ANTHROPIC_VERSION
        return payload
