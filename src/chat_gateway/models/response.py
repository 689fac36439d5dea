"""
Canonical response models.

The shapes here are what callers of the gateway see, regardless of
which backend produced them.
"""

import json
import time
import uuid
from typing import Optional, List, Dict, Any, Literal
from pydantic import BaseModel, Field
from enum import Enum


class FinishReason(str, Enum):
    """Reasons for completion finishing."""
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"


CANONICAL_FINISH_REASONS = frozenset(reason.value for reason in FinishReason)


def normalize_finish_reason(
    value: Optional[str],
    mapping: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Map a backend finish reason onto the canonical vocabulary.

    Args:
        value: Native finish reason, or None while generation continues
        mapping: Backend-specific translation table

    Returns:
        Canonical finish reason; unknown values become "stop"
    """
    if value is None:
        return None
    if mapping and value in mapping:
        return mapping[value]
    if value in CANONICAL_FINISH_REASONS:
        return value
    if value == "function_call":
        return FinishReason.TOOL_CALLS.value
    return FinishReason.STOP.value


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex}"


def _now() -> int:
    return int(time.time())


class Usage(BaseModel):
    """Token usage information."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def of(cls, prompt_tokens: int, completion_tokens: int) -> "Usage":
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )


class ResponseMessage(BaseModel):
    """Message in response."""
    role: Literal["assistant"] = "assistant"
    content: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    refusal: Optional[str] = None


class Choice(BaseModel):
    """A single completion choice."""
    index: int = 0
    message: ResponseMessage
    finish_reason: Optional[str] = None
    logprobs: Optional[Dict[str, Any]] = None


class Delta(BaseModel):
    """Delta content for streaming."""
    role: Optional[str] = None
    content: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None


class ChunkChoice(BaseModel):
    """A streaming choice."""
    index: int = 0
    delta: Delta = Field(default_factory=Delta)
    finish_reason: Optional[str] = None
    logprobs: Optional[Dict[str, Any]] = None


class ChatResponse(BaseModel):
    """
    Canonical (non-streaming) chat completion response.

    Compatible with OpenAI API format.
    """
    id: str = Field(default_factory=new_completion_id)
    object: Literal["chat.completion"] = "chat.completion"
    created: int = Field(default_factory=_now)
    model: str = Field(default="")
    choices: List[Choice] = Field(default_factory=list)
    usage: Optional[Usage] = None
    system_fingerprint: Optional[str] = None

    @classmethod
    def create(
        cls,
        model: str,
        content: Optional[str],
        finish_reason: Optional[str] = FinishReason.STOP.value,
        usage: Optional[Usage] = None,
        tool_calls: Optional[List[Dict[str, Any]]] = None,
        id: Optional[str] = None,
    ) -> "ChatResponse":
        """Create a single-choice assistant response."""
        return cls(
            id=id or new_completion_id(),
            model=model,
            choices=[Choice(
                index=0,
                message=ResponseMessage(content=content, tool_calls=tool_calls or None),
                finish_reason=finish_reason or FinishReason.STOP.value,
            )],
            usage=usage,
        )

    @classmethod
    def from_openai(
        cls,
        data: Dict[str, Any],
        finish_reasons: Optional[Dict[str, str]] = None,
    ) -> "ChatResponse":
        """Create from an OpenAI-compatible API response."""
        choices = []
        for c in data.get("choices", []):
            message = c.get("message") or {}
            choices.append(Choice(
                index=c.get("index", 0),
                message=ResponseMessage(
                    content=message.get("content"),
                    tool_calls=message.get("tool_calls") or None,
                    refusal=message.get("refusal"),
                ),
                finish_reason=normalize_finish_reason(
                    c.get("finish_reason") or FinishReason.STOP.value, finish_reasons
                ),
                logprobs=c.get("logprobs"),
            ))

        usage_data = data.get("usage")
        usage = Usage(
            prompt_tokens=usage_data.get("prompt_tokens", 0),
            completion_tokens=usage_data.get("completion_tokens", 0),
            total_tokens=usage_data.get("total_tokens", 0),
        ) if usage_data else None

        return cls(
            id=data.get("id") or new_completion_id(),
            created=data.get("created") or _now(),
            model=data.get("model", ""),
            choices=choices,
            usage=usage,
            system_fingerprint=data.get("system_fingerprint"),
        )

    @classmethod
    def from_anthropic(
        cls,
        data: Dict[str, Any],
        finish_reasons: Optional[Dict[str, str]] = None,
    ) -> "ChatResponse":
        """Create from an Anthropic Messages API response."""
        content = ""
        tool_calls = []

        for block in data.get("content", []):
            if block.get("type") == "text":
                content += block.get("text", "")
            elif block.get("type") == "tool_use":
                tool_calls.append({
                    "id": block.get("id", ""),
                    "type": "function",
                    "function": {
                        "name": block.get("name", ""),
                        "arguments": json.dumps(block.get("input", {})),
                    },
                })

        usage_data = data.get("usage", {})

        return cls.create(
            id=data.get("id"),
            model=data.get("model", ""),
            content=content if content or not tool_calls else None,
            tool_calls=tool_calls,
            finish_reason=normalize_finish_reason(
                data.get("stop_reason") or FinishReason.STOP.value, finish_reasons
            ),
            usage=Usage.of(
                usage_data.get("input_tokens", 0),
                usage_data.get("output_tokens", 0),
            ),
        )

    def get_content(self) -> Optional[str]:
        """Get the content from the first choice."""
        if self.choices:
            return self.choices[0].message.content
        return None

    def to_openai_format(self) -> Dict[str, Any]:
        """Serialize as an OpenAI chat.completion body."""
        data = self.model_dump(exclude_none=True)
        for raw, choice in zip(self.choices, data["choices"]):
            choice["message"]["content"] = raw.message.content
            choice["finish_reason"] = raw.finish_reason
            choice["logprobs"] = raw.logprobs
        return data


class ChatCompletionChunk(BaseModel):
    """One canonical streaming increment."""
    id: str
    object: Literal["chat.completion.chunk"] = "chat.completion.chunk"
    created: int = Field(default_factory=_now)
    model: str = Field(default="")
    choices: List[ChunkChoice] = Field(default_factory=list)
    usage: Optional[Usage] = None
    system_fingerprint: Optional[str] = None

    @property
    def content(self) -> Optional[str]:
        if self.choices:
            return self.choices[0].delta.content
        return None

    @property
    def finish_reason(self) -> Optional[str]:
        if self.choices:
            return self.choices[0].finish_reason
        return None

    def to_openai_format(self) -> Dict[str, Any]:
        """Serialize as an OpenAI chat.completion.chunk payload."""
        data = self.model_dump(exclude_none=True)
        for raw, choice in zip(self.choices, data["choices"]):
            choice["finish_reason"] = raw.finish_reason
            choice["logprobs"] = raw.logprobs
        return data


class ModelCard(BaseModel):
    """Entry of the /v1/models listing."""
    id: str
    object: Literal["model"] = "model"
    created: int = Field(default_factory=_now)
    owned_by: str


class ModelList(BaseModel):
    """Response body of /v1/models."""
    object: Literal["list"] = "list"
    data: List[ModelCard] = Field(default_factory=list)
