"""Anthropic Messages API adapter."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from switchyard.errors import APIError
from switchyard.messages import FilePart, ImagePart, TextPart, ToolCallPart, ToolResultPart
from switchyard.providers._errors import wrap_provider_error
from switchyard.providers._utils import (
    is_url,
    parse_tool_args,
    provider_extras,
    serialize_tool_result,
    split_data_url,
    split_system,
    to_strict_schema,
    vertex_credentials,
)
from switchyard.providers.models import Finish, ReasoningDelta, TextDelta, ToolCall, Usage
from switchyard.rules import ANTHROPIC_DEFAULT_MAX_TOKENS

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchyard.config import AmazonBedrockConfiguration, VertexConfiguration
    from switchyard.messages import Message
    from switchyard.providers.models import ModelCall, StreamChunk

_EPHEMERAL = {"type": "ephemeral"}
_JSON_ONLY_INSTRUCTION = "Respond with a single JSON value and nothing else."

_STOP_REASONS: dict[str, str] = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "pause_turn": "stop",
    "max_tokens": "length",
    "tool_use": "tool-calls",
    "refusal": "content-filter",
}


class AnthropicModel:
    """Streams through Anthropic's Messages API."""

    def __init__(
        self,
        model_id: str,
        *,
        api_key: str,
        base_url: str | None = None,
        cache_control: bool = False,
    ) -> None:
        self.provider = "anthropic"
        self.model_id = model_id
        self.api_key = api_key
        self.base_url = base_url
        self.cache_control = cache_control
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the async Anthropic client."""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise APIError(
                    "anthropic package not installed",
                    hint="pip install anthropic",
                ) from e
            self._client = AsyncAnthropic(api_key=self.api_key, base_url=self.base_url)
        return self._client

    def build_request(self, call: ModelCall) -> dict[str, Any]:
        """Translate *call* into ``messages.create`` keyword arguments."""
        system, rest = split_system(call.messages)
        messages = _build_messages(rest)
        kwargs: dict[str, Any] = {
            "model": self.model_id,
            "messages": messages,
            "max_tokens": call.max_tokens or ANTHROPIC_DEFAULT_MAX_TOKENS,
        }

        fmt = call.response_format
        if fmt is not None and fmt.schema is None:
            system = f"{system}\n\n{_JSON_ONLY_INSTRUCTION}" if system else _JSON_ONLY_INSTRUCTION
        if system:
            if self.cache_control:
                kwargs["system"] = [
                    {"type": "text", "text": system, "cache_control": _EPHEMERAL}
                ]
            else:
                kwargs["system"] = system
        if self.cache_control and messages:
            _mark_cache_breakpoint(messages[-1])

        if call.temperature is not None:
            kwargs["temperature"] = call.temperature
        if call.top_p is not None:
            kwargs["top_p"] = call.top_p
        if call.top_k is not None:
            kwargs["top_k"] = call.top_k
        if call.stop_sequences:
            kwargs["stop_sequences"] = list(call.stop_sequences)

        if call.tools:
            kwargs["tools"] = [
                {
                    "name": t.name,
                    "description": t.description,
                    "input_schema": t.parameters,
                }
                for t in call.tools.values()
            ]
            mapped = _map_tool_choice(call.tool_choice)
            if mapped is not None:
                kwargs["tool_choice"] = mapped

        # Structured output via output_config.format.
        if fmt is not None and fmt.schema is not None:
            kwargs["output_config"] = {
                "format": {"type": "json_schema", "schema": to_strict_schema(fmt.schema)}
            }
        kwargs.update(provider_extras(call, self.provider))
        return kwargs

    async def stream(self, call: ModelCall) -> AsyncIterator[StreamChunk]:
        """Stream one generation as provider-neutral chunks."""
        client = self._get_client()
        kwargs = self.build_request(call)
        tool_blocks: dict[int, dict[str, Any]] = {}
        input_tokens = 0
        output_tokens = 0
        stop_reason: str | None = None
        message_id: str | None = None
        try:
            events = await client.messages.create(stream=True, **kwargs)
            async for event in events:
                kind = getattr(event, "type", None)
                if kind == "message_start":
                    message = event.message
                    message_id = getattr(message, "id", None)
                    usage_raw = getattr(message, "usage", None)
                    if usage_raw is not None:
                        input_tokens = int(getattr(usage_raw, "input_tokens", 0) or 0)
                        output_tokens = int(getattr(usage_raw, "output_tokens", 0) or 0)
                elif kind == "content_block_start":
                    block = event.content_block
                    if getattr(block, "type", None) == "tool_use":
                        tool_blocks[event.index] = {
                            "id": block.id,
                            "name": block.name,
                            "json": "",
                        }
                elif kind == "content_block_delta":
                    delta = event.delta
                    delta_type = getattr(delta, "type", None)
                    if delta_type == "text_delta":
                        yield TextDelta(delta.text)
                    elif delta_type == "thinking_delta":
                        yield ReasoningDelta(delta.thinking)
                    elif delta_type == "input_json_delta" and event.index in tool_blocks:
                        tool_blocks[event.index]["json"] += delta.partial_json
                elif kind == "content_block_stop":
                    block = tool_blocks.pop(event.index, None)
                    if block is not None:
                        yield ToolCall(
                            tool_call_id=block["id"],
                            tool_name=block["name"],
                            args=parse_tool_args(block["json"]),
                        )
                elif kind == "message_delta":
                    stop_reason = getattr(event.delta, "stop_reason", None) or stop_reason
                    usage_raw = getattr(event, "usage", None)
                    if usage_raw is not None:
                        output_tokens = int(getattr(usage_raw, "output_tokens", 0) or 0)
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=self.provider,
                phase="stream",
                message="Anthropic stream failed",
            ) from e

        yield Finish(
            finish_reason=_STOP_REASONS.get(stop_reason or "", "unknown"),
            usage=Usage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            provider_metadata=(
                {self.provider: {"message_id": message_id}} if message_id else {}
            ),
        )


class AnthropicVertexModel(AnthropicModel):
    """Claude through Google Vertex AI."""

    def __init__(
        self,
        model_id: str,
        *,
        vertex: VertexConfiguration,
        base_url: str | None = None,
        cache_control: bool = False,
    ) -> None:
        super().__init__(model_id, api_key="", base_url=base_url, cache_control=cache_control)
        self.provider = "anthropic_vertex"
        self.vertex = vertex

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                from anthropic import AsyncAnthropicVertex
            except ImportError as e:
                raise APIError(
                    "anthropic Vertex support not installed",
                    hint="pip install 'anthropic[vertex]'",
                ) from e
            self._client = AsyncAnthropicVertex(
                project_id=self.vertex.project,
                region=self.vertex.location,
                credentials=vertex_credentials(self.vertex),
                base_url=self.base_url,
            )
        return self._client


class AnthropicBedrockModel(AnthropicModel):
    """Claude through Amazon Bedrock."""

    def __init__(
        self,
        model_id: str,
        *,
        bedrock: AmazonBedrockConfiguration,
        base_url: str | None = None,
        cache_control: bool = False,
    ) -> None:
        super().__init__(model_id, api_key="", base_url=base_url, cache_control=cache_control)
        self.provider = "amazon_bedrock"
        self.bedrock = bedrock

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                from anthropic import AsyncAnthropicBedrock
            except ImportError as e:
                raise APIError(
                    "anthropic Bedrock support not installed",
                    hint="pip install 'anthropic[bedrock]'",
                ) from e
            # Unset keys fall through to the AWS default credential chain.
            self._client = AsyncAnthropicBedrock(
                aws_region=self.bedrock.region,
                aws_access_key=self.bedrock.access_key_id,
                aws_secret_key=self.bedrock.secret_access_key,
                aws_session_token=self.bedrock.session_token,
                base_url=self.base_url,
            )
        return self._client


def _map_tool_choice(tool_choice: Any) -> dict[str, str] | None:
    """Map tool_choice to Anthropic format."""
    if tool_choice is None:
        return None
    if isinstance(tool_choice, str):
        if tool_choice == "required":
            return {"type": "any"}
        if tool_choice in ("auto", "none"):
            return {"type": tool_choice}
    elif isinstance(tool_choice, dict) and "name" in tool_choice:
        return {"type": "tool", "name": tool_choice["name"]}
    return None


def _source(value: str, mime_type: str | None) -> dict[str, Any]:
    if is_url(value):
        return {"type": "url", "url": value}
    embedded_mime, payload = split_data_url(value)
    return {
        "type": "base64",
        "media_type": embedded_mime or mime_type or "application/octet-stream",
        "data": payload,
    }


def _content_block(part: Any) -> dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ImagePart):
        return {"type": "image", "source": _source(part.image, part.mime_type)}
    if isinstance(part, FilePart):
        if part.mime_type != "application/pdf" and not part.mime_type.startswith("text/"):
            raise APIError(
                f"Unsupported mime type for Anthropic provider: {part.mime_type}",
                hint="Anthropic supports images, PDFs and plain text documents.",
            )
        block: dict[str, Any] = {"type": "document", "source": _source(part.data, part.mime_type)}
        if part.filename:
            block["title"] = part.filename
        return block
    if isinstance(part, ToolCallPart):
        return {
            "type": "tool_use",
            "id": part.tool_call_id,
            "name": part.tool_name,
            "input": part.args,
        }
    if isinstance(part, ToolResultPart):
        return {
            "type": "tool_result",
            "tool_use_id": part.tool_call_id,
            "content": serialize_tool_result(part.result),
            "is_error": part.is_error,
        }
    raise APIError(f"Unsupported part for Anthropic input: {part!r}")


def _build_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Build the messages list; tool results travel as user turns."""
    out: list[dict[str, Any]] = []
    for message in messages:
        role = "assistant" if message.role == "assistant" else "user"
        blocks = [_content_block(p) for p in message.parts]
        if not blocks:
            continue
        _append_message(out, {"role": role, "content": blocks})
    return out


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    Anthropic requires strict user/assistant alternation. A tool-result turn
    followed by a user prompt, or a system message placed mid-conversation,
    both produce consecutive same-role messages.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        messages[-1]["content"] = messages[-1]["content"] + msg["content"]
    else:
        messages.append(msg)


def _mark_cache_breakpoint(message: dict[str, Any]) -> None:
    content = message["content"]
    if content:
        content[-1] = {**content[-1], "cache_control": _EPHEMERAL}
