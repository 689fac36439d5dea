"""
Canonical chat completion request models.
"""

import json
from typing import Optional, List, Dict, Any, Union, Literal
from pydantic import BaseModel, ConfigDict, Field


class FunctionDefinition(BaseModel):
    """Function definition for tool use."""
    name: str
    description: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None


class Tool(BaseModel):
    """Tool definition."""
    type: Literal["function"] = "function"
    function: FunctionDefinition


class Message(BaseModel):
    """
    Canonical message format.

    Supports:
    - System (and developer) messages
    - User messages (text or multimodal content parts)
    - Assistant messages (with optional tool calls)
    - Tool messages (results)
    """
    model_config = ConfigDict(extra="allow", frozen=True)

    role: Literal["system", "developer", "user", "assistant", "tool"]
    content: Optional[Union[str, List[Dict[str, Any]]]] = None
    name: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    tool_call_id: Optional[str] = None

    @property
    def is_system(self) -> bool:
        return self.role in ("system", "developer")

    def text(self) -> str:
        """Flatten content to plain text, dropping non-text parts."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            part.get("text", "")
            for part in self.content
            if part.get("type") == "text"
        )


class ChatRequest(BaseModel):
    """
    Canonical chat completion request.

    Mirrors the OpenAI chat completion body. Unknown keys are kept
    and forwarded verbatim to OpenAI-compatible backends.
    """
    model_config = ConfigDict(extra="allow", frozen=True)

    # Required
    model: str = Field(..., description="Model identifier")
    messages: List[Message] = Field(..., min_length=1, description="Conversation messages")

    # Optional parameters
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    top_p: Optional[float] = Field(default=None, ge=0, le=1)
    n: Optional[int] = Field(default=None, ge=1)
    stream: bool = Field(default=False)
    stop: Optional[Union[str, List[str]]] = None
    max_tokens: Optional[int] = Field(default=None, ge=1)
    presence_penalty: Optional[float] = Field(default=None, ge=-2, le=2)
    frequency_penalty: Optional[float] = Field(default=None, ge=-2, le=2)
    seed: Optional[int] = None
    user: Optional[str] = None

    # Tool use
    tools: Optional[List[Tool]] = None
    tool_choice: Optional[Union[str, Dict[str, Any]]] = None

    # Response format
    response_format: Optional[Dict[str, Any]] = None

    @property
    def stop_sequences(self) -> Optional[List[str]]:
        if self.stop is None:
            return None
        return self.stop if isinstance(self.stop, list) else [self.stop]

    def to_openai_format(self) -> Dict[str, Any]:
        """Convert to OpenAI API format, extra keys included."""
        return self.model_dump(exclude_none=True)

    def to_anthropic_format(self) -> Dict[str, Any]:
        """Convert to Anthropic Messages API format."""
        # System prompts become the top-level "system" field
        system_parts = []
        messages: List[Dict[str, Any]] = []

        for m in self.messages:
            if m.is_system:
                system_parts.append(m.text())
            elif m.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": m.tool_call_id or "",
                    "content": m.text(),
                }
                _append_anthropic_block(messages, "user", block)
            elif m.role == "assistant" and m.tool_calls:
                blocks = []
                if m.text():
                    blocks.append({"type": "text", "text": m.text()})
                for call in m.tool_calls:
                    function = call.get("function", {})
                    blocks.append({
                        "type": "tool_use",
                        "id": call.get("id", ""),
                        "name": function.get("name", ""),
                        "input": _parse_arguments(function.get("arguments")),
                    })
                messages.append({"role": "assistant", "content": blocks})
            else:
                messages.append({"role": m.role, "content": _anthropic_content(m)})

        data = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens or 4096,
        }

        if system_parts:
            data["system"] = "\n\n".join(system_parts)

        if self.temperature is not None:
            # Anthropic caps temperature at 1.0
            data["temperature"] = min(self.temperature, 1.0)

        if self.top_p is not None:
            data["top_p"] = self.top_p

        if self.stop_sequences:
            data["stop_sequences"] = self.stop_sequences

        if self.tools:
            data["tools"] = [
                {
                    "name": t.function.name,
                    "description": t.function.description or "",
                    "input_schema": t.function.parameters or {"type": "object", "properties": {}},
                }
                for t in self.tools
            ]

        if self.stream:
            data["stream"] = True

        return data


def _anthropic_content(message: Message) -> Union[str, List[Dict[str, Any]]]:
    if message.content is None or isinstance(message.content, str):
        return message.content or ""

    blocks = []
    for part in message.content:
        if part.get("type") == "text":
            blocks.append({"type": "text", "text": part.get("text", "")})
        elif part.get("type") == "image_url":
            url = part.get("image_url", {}).get("url", "")
            if url.startswith("data:") and ";base64," in url:
                media_type, data = url[5:].split(";base64,", 1)
                blocks.append({
                    "type": "image",
                    "source": {"type": "base64", "media_type": media_type, "data": data},
                })
            else:
                blocks.append({"type": "image", "source": {"type": "url", "url": url}})
    return blocks


def _append_anthropic_block(messages: List[Dict[str, Any]], role: str, block: Dict[str, Any]) -> None:
    # Consecutive tool results must share a single user turn
    if messages and messages[-1]["role"] == role and isinstance(messages[-1]["content"], list):
        messages[-1]["content"].append(block)
    else:
        messages.append({"role": role, "content": [block]})


def _parse_arguments(arguments: Any) -> Dict[str, Any]:
    if isinstance(arguments, dict):
        return arguments
    if not arguments:
        return {}
    try:
        return json.loads(arguments)
    except ValueError:
        return {}
