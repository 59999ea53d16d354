"""OpenAI adapters: the Responses API and OpenAI-compatible chat completions."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

from switchyard.errors import APIError
from switchyard.messages import FilePart, ImagePart, TextPart, ToolCallPart, ToolResultPart
from switchyard.providers._errors import wrap_provider_error
from switchyard.providers._utils import (
    data_url,
    is_url,
    parse_tool_args,
    provider_extras,
    serialize_tool_result,
    to_strict_schema,
)
from switchyard.providers.models import (
    Finish,
    ReasoningDelta,
    TextDelta,
    ToolCall,
    Usage,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchyard.messages import Message
    from switchyard.providers.models import ModelCall, StreamChunk
    from switchyard.tools import Tool

#: Default endpoints of the OpenAI-compatible providers.
COMPATIBLE_BASE_URLS: dict[str, str] = {
    "groq": "https://api.groq.com/openai/v1",
    "mistral": "https://api.mistral.ai/v1",
    "xai": "https://api.x.ai/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "perplexity": "https://api.perplexity.ai",
}

_RESPONSES_FINISH_REASONS: dict[str, str] = {
    "max_output_tokens": "length",
    "content_filter": "content-filter",
}

_CHAT_FINISH_REASONS: dict[str, str] = {
    "stop": "stop",
    "length": "length",
    "tool_calls": "tool-calls",
    "function_call": "tool-calls",
    "content_filter": "content-filter",
}


def _make_client(api_key: str, base_url: str | None) -> Any:
    try:
        from openai import AsyncOpenAI
    except ImportError as e:
        raise APIError(
            "openai package not installed",
            hint="pip install openai",
        ) from e
    return AsyncOpenAI(api_key=api_key, base_url=base_url)


def _map_tool_choice(tool_choice: Any, *, nested: bool) -> Any:
    if tool_choice is None or isinstance(tool_choice, str):
        return tool_choice
    if nested:
        return {"type": "function", "function": {"name": tool_choice["name"]}}
    return {"type": "function", "name": tool_choice["name"]}


# =============================================================================
# Responses API
# =============================================================================


class OpenAIResponsesModel:
    """Streams through OpenAI's Responses API."""

    def __init__(self, model_id: str, *, api_key: str, base_url: str | None = None) -> None:
        self.provider = "openai"
        self.model_id = model_id
        self.api_key = api_key
        self.base_url = base_url
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the async OpenAI client."""
        if self._client is None:
            self._client = _make_client(self.api_key, self.base_url)
        return self._client

    def build_request(self, call: ModelCall) -> dict[str, Any]:
        """Translate *call* into ``responses.create`` keyword arguments."""
        kwargs: dict[str, Any] = {
            "model": self.model_id,
            "input": _responses_input(call.messages),
        }
        if call.temperature is not None:
            kwargs["temperature"] = call.temperature
        if call.top_p is not None:
            kwargs["top_p"] = call.top_p
        if call.max_tokens is not None:
            kwargs["max_output_tokens"] = call.max_tokens
        if call.tools:
            kwargs["tools"] = [_responses_tool(t) for t in call.tools.values()]
            if call.tool_choice is not None:
                kwargs["tool_choice"] = _map_tool_choice(call.tool_choice, nested=False)

        fmt = call.response_format
        if fmt is not None:
            if fmt.schema is None:
                kwargs["text"] = {"format": {"type": "json_object"}}
            else:
                kwargs["text"] = {
                    "format": {
                        "type": "json_schema",
                        "name": fmt.name,
                        "schema": to_strict_schema(fmt.schema),
                        "strict": True,
                    }
                }
        kwargs.update(provider_extras(call, self.provider))
        return kwargs

    async def stream(self, call: ModelCall) -> AsyncIterator[StreamChunk]:
        """Stream one generation as provider-neutral chunks."""
        client = self._get_client()
        kwargs = self.build_request(call)
        saw_tool_call = False
        try:
            events = await client.responses.create(stream=True, **kwargs)
            async for event in events:
                kind = getattr(event, "type", None)
                if kind == "response.output_text.delta":
                    yield TextDelta(event.delta)
                elif kind == "response.reasoning_summary_text.delta":
                    yield ReasoningDelta(event.delta)
                elif kind == "response.output_item.done":
                    item = event.item
                    if getattr(item, "type", None) == "function_call":
                        saw_tool_call = True
                        yield ToolCall(
                            tool_call_id=item.call_id,
                            tool_name=item.name,
                            args=parse_tool_args(item.arguments),
                        )
                elif kind in ("response.completed", "response.incomplete"):
                    yield _responses_finish(event.response, saw_tool_call=saw_tool_call)
                elif kind == "response.failed":
                    error = getattr(event.response, "error", None)
                    raise APIError(
                        f"OpenAI response failed: {getattr(error, 'message', 'unknown error')}",
                        provider=self.provider,
                        phase="stream",
                    )
                elif kind == "error":
                    raise APIError(
                        f"OpenAI stream error: {getattr(event, 'message', '')}",
                        provider=self.provider,
                        phase="stream",
                    )
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=self.provider,
                phase="stream",
                message="OpenAI stream failed",
            ) from e


def _responses_tool(tool: Tool) -> dict[str, Any]:
    return {
        "type": "function",
        "name": tool.name,
        "description": tool.description,
        "parameters": tool.parameters,
        "strict": False,
    }


def _responses_part(part: Any) -> dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "input_text", "text": part.text}
    if isinstance(part, ImagePart):
        return {"type": "input_image", "image_url": data_url(part.image, part.mime_type)}
    if isinstance(part, FilePart):
        if is_url(part.data):
            return {"type": "input_file", "file_url": part.data}
        return {
            "type": "input_file",
            "filename": part.filename or "file",
            "file_data": data_url(part.data, part.mime_type),
        }
    raise APIError(f"Unsupported part for OpenAI input: {part.type!r}")


def _responses_input(messages: tuple[Message, ...]) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "system":
            items.append({"role": "system", "content": message.text})
        elif message.role == "user":
            items.append(
                {"role": "user", "content": [_responses_part(p) for p in message.parts]}
            )
        elif message.role == "assistant":
            text = message.text
            if text:
                items.append(
                    {"role": "assistant", "content": [{"type": "output_text", "text": text}]}
                )
            for part in message.parts:
                if isinstance(part, ToolCallPart):
                    items.append(
                        {
                            "type": "function_call",
                            "call_id": part.tool_call_id,
                            "name": part.tool_name,
                            "arguments": json.dumps(part.args),
                        }
                    )
        else:
            for part in message.parts:
                if isinstance(part, ToolResultPart):
                    items.append(
                        {
                            "type": "function_call_output",
                            "call_id": part.tool_call_id,
                            "output": serialize_tool_result(part.result),
                        }
                    )
    return items


def _responses_finish(response: Any, *, saw_tool_call: bool) -> Finish:
    """Build the finish chunk, preferring incomplete_details.reason."""
    reason = "stop"
    if getattr(response, "status", None) == "incomplete":
        details = getattr(response, "incomplete_details", None)
        raw = getattr(details, "reason", None)
        reason = _RESPONSES_FINISH_REASONS.get(raw, "other") if raw else "other"
    elif saw_tool_call:
        reason = "tool-calls"

    usage = Usage()
    usage_raw = getattr(response, "usage", None)
    if usage_raw is not None:
        details = getattr(usage_raw, "output_tokens_details", None)
        reasoning = getattr(details, "reasoning_tokens", None) if details else None
        usage = Usage(
            input_tokens=int(getattr(usage_raw, "input_tokens", 0) or 0),
            output_tokens=int(getattr(usage_raw, "output_tokens", 0) or 0),
            total_tokens=int(getattr(usage_raw, "total_tokens", 0) or 0),
            reasoning_tokens=int(reasoning) if reasoning is not None else None,
        )

    response_id = getattr(response, "id", None)
    metadata = {"openai": {"response_id": response_id}} if isinstance(response_id, str) else {}
    return Finish(finish_reason=reason, usage=usage, provider_metadata=metadata)


# =============================================================================
# Chat completions (OpenAI-compatible providers)
# =============================================================================


class OpenAIChatModel:
    """Streams through an OpenAI-compatible chat-completions endpoint."""

    def __init__(
        self,
        model_id: str,
        *,
        provider: str,
        api_key: str,
        base_url: str | None = None,
    ) -> None:
        self.provider = provider
        self.model_id = model_id
        self.api_key = api_key
        self.base_url = base_url or COMPATIBLE_BASE_URLS.get(provider)
        if self.base_url is None:
            raise APIError(
                f"No endpoint known for provider {provider!r}",
                hint="Pass base_url on the provider descriptor.",
            )
        self._client: Any = None

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = _make_client(self.api_key, self.base_url)
        return self._client

    def build_request(self, call: ModelCall) -> dict[str, Any]:
        """Translate *call* into ``chat.completions.create`` keyword arguments."""
        kwargs: dict[str, Any] = {
            "model": self.model_id,
            "messages": _chat_messages(call.messages),
            "stream_options": {"include_usage": True},
        }
        for name, key in (
            ("temperature", "temperature"),
            ("top_p", "top_p"),
            ("max_tokens", "max_tokens"),
            ("presence_penalty", "presence_penalty"),
            ("frequency_penalty", "frequency_penalty"),
            ("seed", "seed"),
        ):
            value = getattr(call, name)
            if value is not None:
                kwargs[key] = value
        if call.stop_sequences:
            kwargs["stop"] = list(call.stop_sequences)
        if call.tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in call.tools.values()
            ]
            if call.tool_choice is not None:
                kwargs["tool_choice"] = _map_tool_choice(call.tool_choice, nested=True)

        fmt = call.response_format
        if fmt is not None:
            if fmt.schema is None:
                kwargs["response_format"] = {"type": "json_object"}
            else:
                kwargs["response_format"] = {
                    "type": "json_schema",
                    "json_schema": {
                        "name": fmt.name,
                        "schema": to_strict_schema(fmt.schema),
                        "strict": True,
                    },
                }
        kwargs.update(provider_extras(call, self.provider))
        return kwargs

    async def stream(self, call: ModelCall) -> AsyncIterator[StreamChunk]:
        """Stream one generation as provider-neutral chunks."""
        client = self._get_client()
        kwargs = self.build_request(call)
        # Tool calls arrive as fragments keyed by index.
        pending: dict[int, dict[str, Any]] = {}
        finish_reason: str | None = None
        usage = Usage()
        try:
            chunks = await client.chat.completions.create(stream=True, **kwargs)
            async for chunk in chunks:
                usage_raw = getattr(chunk, "usage", None)
                if usage_raw is not None:
                    usage = Usage(
                        input_tokens=int(getattr(usage_raw, "prompt_tokens", 0) or 0),
                        output_tokens=int(getattr(usage_raw, "completion_tokens", 0) or 0),
                        total_tokens=int(getattr(usage_raw, "total_tokens", 0) or 0),
                    )
                for choice in getattr(chunk, "choices", None) or []:
                    delta = choice.delta
                    reasoning = getattr(delta, "reasoning_content", None)
                    if reasoning:
                        yield ReasoningDelta(reasoning)
                    if delta.content:
                        yield TextDelta(delta.content)
                    for fragment in getattr(delta, "tool_calls", None) or []:
                        entry = pending.setdefault(
                            fragment.index, {"id": None, "name": "", "arguments": ""}
                        )
                        if fragment.id:
                            entry["id"] = fragment.id
                        function = fragment.function
                        if function is not None:
                            entry["name"] += function.name or ""
                            entry["arguments"] += function.arguments or ""
                    if choice.finish_reason:
                        finish_reason = choice.finish_reason
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=self.provider,
                phase="stream",
                message=f"{self.provider} stream failed",
            ) from e

        for index in sorted(pending):
            entry = pending[index]
            yield ToolCall(
                tool_call_id=entry["id"] or f"call_{index}",
                tool_name=entry["name"],
                args=parse_tool_args(entry["arguments"]),
            )
        yield Finish(
            finish_reason=_CHAT_FINISH_REASONS.get(finish_reason or "", "unknown"),
            usage=usage,
        )


def _chat_part(part: Any) -> dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ImagePart):
        return {"type": "image_url", "image_url": {"url": data_url(part.image, part.mime_type)}}
    if isinstance(part, FilePart):
        if is_url(part.data):
            raise APIError(
                "Chat completions cannot fetch remote files",
                hint="Pass file data as base64.",
            )
        return {
            "type": "file",
            "file": {
                "filename": part.filename or "file",
                "file_data": data_url(part.data, part.mime_type),
            },
        }
    raise APIError(f"Unsupported part for chat input: {part.type!r}")


def _chat_messages(messages: tuple[Message, ...]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "system":
            out.append({"role": "system", "content": message.text})
        elif message.role == "user":
            if isinstance(message.content, str):
                out.append({"role": "user", "content": message.content})
            else:
                out.append(
                    {"role": "user", "content": [_chat_part(p) for p in message.parts]}
                )
        elif message.role == "assistant":
            entry: dict[str, Any] = {"role": "assistant", "content": message.text or None}
            calls = [p for p in message.parts if isinstance(p, ToolCallPart)]
            if calls:
                entry["tool_calls"] = [
                    {
                        "id": c.tool_call_id,
                        "type": "function",
                        "function": {"name": c.tool_name, "arguments": json.dumps(c.args)},
                    }
                    for c in calls
                ]
            out.append(entry)
        else:
            for part in message.parts:
                if isinstance(part, ToolResultPart):
                    out.append(
                        {
                            "role": "tool",
                            "tool_call_id": part.tool_call_id,
                            "content": serialize_tool_result(part.result),
                        }
                    )
    return out
