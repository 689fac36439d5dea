"""
Backend adapters for the supported providers.
"""

from .openai_adapter import OpenAIAdapter
from .azure_openai_adapter import AzureOpenAIAdapter
from .anthropic_adapter import AnthropicAdapter
from .anthropic_vertex_adapter import AnthropicVertexAdapter
from .google_adapter import GoogleAdapter
from .cohere_adapter import CohereAdapter
from .bailian_adapter import BailianAdapter
from .ollama_adapter import OllamaAdapter

__all__ = [
    "OpenAIAdapter",
    "AzureOpenAIAdapter",
    "AnthropicAdapter",
    "AnthropicVertexAdapter",
    "GoogleAdapter",
    "CohereAdapter",
    "BailianAdapter",
    "OllamaAdapter",
]
