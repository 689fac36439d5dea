"""
Canonical data models.
"""

from .request import ChatRequest, Message, Tool, FunctionDefinition
from .response import (
    ChatResponse,
    ChatCompletionChunk,
    Choice,
    ChunkChoice,
    Delta,
    FinishReason,
    ModelCard,
    ModelList,
    ResponseMessage,
    Usage,
    normalize_finish_reason,
)

__all__ = [
    "ChatRequest",
    "Message",
    "Tool",
    "FunctionDefinition",
    "ChatResponse",
    "ChatCompletionChunk",
    "Choice",
    "ChunkChoice",
    "Delta",
    "FinishReason",
    "ModelCard",
    "ModelList",
    "ResponseMessage",
    "Usage",
    "normalize_finish_reason",
]
