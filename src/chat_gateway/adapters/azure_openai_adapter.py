"""
Azure OpenAI Gateway Adapter.

Provides integration with Azure OpenAI Service with support for
deployments and API versions.
"""
import logging
from typing import Dict, Iterable, Optional, Any

import httpx

from .openai_adapter import OpenAIAdapter
from ..models.request import ChatRequest

logger = logging.getLogger(__name__)


class AzureOpenAIAdapter(OpenAIAdapter):
    """
    Azure OpenAI Service adapter.

    Same wire protocol as OpenAI, except:
    - the deployment is part of the URL instead of the body
    - authentication uses the api-key header
    - responses may carry content filter frames without choices
    """

    DEFAULT_API_VERSION = "2024-10-21"

    def __init__(
        self,
        name: str,
        endpoint: str,
        api_key: str,
        supported_models: Iterable[str],
        api_version: Optional[str] = None,
        deployment_map: Optional[Dict[str, str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        """
        Initialize Azure OpenAI adapter.

        Args:
            name: Backend name
            endpoint: Azure OpenAI endpoint (e.g., https://myresource.openai.azure.com)
            api_key: Azure OpenAI API key
            supported_models: Model names routed to this backend
            api_version: API version to use
            deployment_map: Map of model names to Azure deployment names
            http_client: Shared HTTP client
            timeout: Request timeout in seconds
        """
        models = list(supported_models) + list((deployment_map or {}).keys())
        super().__init__(
            name,
            api_key=api_key,
            supported_models=models,
            base_url=endpoint,
            http_client=http_client,
            timeout=timeout,
        )
        self._api_version = api_version or self.DEFAULT_API_VERSION
        self._deployment_map = deployment_map or {}

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "api-key": self._api_key,
        }

    def get_deployment(self, model: str) -> str:
        """Get Azure deployment name for a model."""
        # Check explicit mapping first
        if model in self._deployment_map:
            return self._deployment_map[model]
        # Fall back to the Azure naming convention (gpt-3.5 -> gpt-35)
        return model.replace(".", "").replace("_", "-")

    def _chat_url(self, request: ChatRequest) -> str:
        deployment = self.get_deployment(request.model)
        return (
            f"{self._base_url}/openai/deployments/{deployment}/"
            f"chat/completions?api-version={self._api_version}"
        )

    def _build_payload(self, request: ChatRequest, stream: bool) -> Dict[str, Any]:
        payload = super()._build_payload(request, stream)
        payload.pop("model", None)
        return payload


def parse_deployment_map(value: Optional[str]) -> Dict[str, str]:
    """Parse "model=deployment,model2=deployment2" into a mapping."""
    mapping = {}
    for item in (value or "").split(","):
        model, sep, deployment = item.partition("=")
        if sep and model.strip() and deployment.strip():
            mapping[model.strip()] = deployment.strip()
        elif item.strip():
            logger.warning(f"Ignoring malformed Azure deployment mapping: {item!r}")
    return mapping
