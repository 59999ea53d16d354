"""Domain models for the provider transport layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from switchyard.config import ToolChoice
    from switchyard.messages import Message
    from switchyard.tools import Tool


@dataclass(frozen=True)
class Usage:
    """Token accounting for one provider call."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    reasoning_tokens: int | None = None


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model."""

    tool_call_id: str
    tool_name: str
    args: dict[str, Any]
    type: Literal["tool-call"] = "tool-call"


@dataclass(frozen=True)
class TextDelta:
    text: str
    type: Literal["text-delta"] = "text-delta"


@dataclass(frozen=True)
class ReasoningDelta:
    text: str
    type: Literal["reasoning-delta"] = "reasoning-delta"


@dataclass(frozen=True)
class ObjectDelta:
    """A progressively more complete structured value."""

    object: Any
    type: Literal["object"] = "object"


@dataclass(frozen=True)
class Finish:
    finish_reason: str
    usage: Usage = field(default_factory=Usage)
    provider_metadata: dict[str, Any] = field(default_factory=dict)
    type: Literal["finish"] = "finish"


@dataclass(frozen=True)
class StreamError:
    error: Exception
    type: Literal["error"] = "error"


@dataclass(frozen=True)
class StreamAbort:
    reason: Any = None
    type: Literal["abort"] = "abort"


StreamChunk = (
    TextDelta | ReasoningDelta | ToolCall | ObjectDelta | Finish | StreamError | StreamAbort
)


@dataclass(frozen=True)
class ResponseFormat:
    """JSON output constraint. ``schema=None`` asks for JSON without a schema."""

    schema: dict[str, Any] | None = None
    name: str = "response"


@dataclass(frozen=True)
class ModelCall:
    """A unified request payload for one streaming provider call."""

    messages: tuple[Message, ...]
    tools: dict[str, Tool] = field(default_factory=dict)
    tool_choice: ToolChoice | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_tokens: int | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    stop_sequences: tuple[str, ...] | None = None
    seed: int | None = None
    response_format: ResponseFormat | None = None
    provider_options: dict[str, Any] | None = None
