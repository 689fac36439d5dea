"""
Chat Gateway

A single OpenAI-compatible chat-completion API in front of many LLM
backends:
- Per-request backend availability from credentials
- Model routing in a fixed priority order
- Native adapters with canonical responses and stream chunks
"""

from .core.interface import AbstractProvider
from .core.registry import PROVIDERS, ProviderDescriptor, list_available, list_model_cards
from .core.router import find_provider, resolve
from .core.streaming import CancelToken, StreamTranslator
from .core.errors import GatewayError, ModelNotSupportedError, UpstreamError
from .models.request import ChatRequest, Message
from .models.response import ChatResponse, ChatCompletionChunk, Usage

__all__ = [
    "AbstractProvider",
    "PROVIDERS",
    "ProviderDescriptor",
    "list_available",
    "list_model_cards",
    "find_provider",
    "resolve",
    "CancelToken",
    "StreamTranslator",
    "GatewayError",
    "ModelNotSupportedError",
    "UpstreamError",
    "ChatRequest",
    "Message",
    "ChatResponse",
    "ChatCompletionChunk",
    "Usage",
]
