"""Gemini adapter (google-genai)."""

from __future__ import annotations

import asyncio
import base64
import binascii
from typing import TYPE_CHECKING, Any
import uuid

from switchyard.errors import APIError
from switchyard.messages import FilePart, ImagePart, TextPart, ToolCallPart, ToolResultPart
from switchyard.providers._errors import wrap_provider_error
from switchyard.providers._utils import (
    is_url,
    provider_extras,
    split_data_url,
    split_system,
    vertex_credentials,
)
from switchyard.providers.models import Finish, ReasoningDelta, TextDelta, ToolCall, Usage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchyard.config import VertexConfiguration
    from switchyard.messages import Message
    from switchyard.providers.models import ModelCall, StreamChunk

_FINISH_REASONS: dict[str, str] = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content-filter",
    "RECITATION": "content-filter",
    "BLOCKLIST": "content-filter",
    "PROHIBITED_CONTENT": "content-filter",
    "SPII": "content-filter",
    "MALFORMED_FUNCTION_CALL": "error",
}


class GeminiModel:
    """Streams through the Gemini API."""

    def __init__(
        self,
        model_id: str,
        *,
        api_key: str = "",
        base_url: str | None = None,
        vertex: VertexConfiguration | None = None,
    ) -> None:
        self.provider = "google_vertex" if vertex is not None else "google"
        self.model_id = model_id
        self.api_key = api_key
        self.base_url = base_url
        #: Routes through Vertex AI instead of the Gemini Developer API.
        self.vertex = vertex
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazy-initialize the Gemini client."""
        if self._client is None:
            try:
                from google import genai
            except ImportError as e:
                raise APIError(
                    "google-genai package not installed",
                    hint="pip install google-genai",
                ) from e

            http_options = {"base_url": self.base_url} if self.base_url else None
            if self.vertex is not None:
                self._client = genai.Client(
                    vertexai=True,
                    project=self.vertex.project,
                    location=self.vertex.location,
                    credentials=vertex_credentials(self.vertex),
                    http_options=http_options,
                )
            else:
                self._client = genai.Client(api_key=self.api_key, http_options=http_options)
        return self._client

    def build_request(self, call: ModelCall) -> dict[str, Any]:
        """Translate *call* into ``generate_content_stream`` keyword arguments."""
        from google.genai import types

        system, rest = split_system(call.messages)
        config_kwargs: dict[str, Any] = {}
        if system:
            config_kwargs["system_instruction"] = system
        for name, key in (
            ("temperature", "temperature"),
            ("top_p", "top_p"),
            ("top_k", "top_k"),
            ("max_tokens", "max_output_tokens"),
            ("presence_penalty", "presence_penalty"),
            ("frequency_penalty", "frequency_penalty"),
            ("seed", "seed"),
        ):
            value = getattr(call, name)
            if value is not None:
                config_kwargs[key] = value
        if call.stop_sequences:
            config_kwargs["stop_sequences"] = list(call.stop_sequences)

        fmt = call.response_format
        if fmt is not None:
            config_kwargs["response_mime_type"] = "application/json"
            if fmt.schema is not None:
                config_kwargs["response_json_schema"] = fmt.schema

        if call.tools:
            config_kwargs["tools"] = [
                types.Tool(
                    function_declarations=[
                        types.FunctionDeclaration(
                            name=t.name,
                            description=t.description,
                            parameters_json_schema=t.parameters,
                        )
                        for t in call.tools.values()
                    ]
                )
            ]
            tool_config = _map_tool_choice(call.tool_choice)
            if tool_config is not None:
                config_kwargs["tool_config"] = tool_config

        config_kwargs.update(provider_extras(call, self.provider))
        return {
            "model": self.model_id,
            "contents": _build_contents(rest),
            "config": types.GenerateContentConfig(**config_kwargs),
        }

    async def stream(self, call: ModelCall) -> AsyncIterator[StreamChunk]:
        """Stream one generation as provider-neutral chunks."""
        client = self._get_client()
        kwargs = self.build_request(call)
        usage = Usage()
        finish_reason: str | None = None
        saw_tool_call = False
        try:
            chunks = await client.aio.models.generate_content_stream(**kwargs)
            async for chunk in chunks:
                um = getattr(chunk, "usage_metadata", None)
                if um is not None:
                    thoughts = getattr(um, "thoughts_token_count", None)
                    usage = Usage(
                        input_tokens=int(getattr(um, "prompt_token_count", 0) or 0),
                        output_tokens=int(getattr(um, "candidates_token_count", 0) or 0),
                        total_tokens=int(getattr(um, "total_token_count", 0) or 0),
                        reasoning_tokens=int(thoughts) if thoughts is not None else None,
                    )
                candidates = getattr(chunk, "candidates", None) or []
                if not candidates:
                    continue
                candidate = candidates[0]
                content = getattr(candidate, "content", None)
                for part in getattr(content, "parts", None) or []:
                    fc = getattr(part, "function_call", None)
                    if fc is not None:
                        saw_tool_call = True
                        yield ToolCall(
                            tool_call_id=str(fc.id or f"call_{uuid.uuid4().hex[:8]}"),
                            tool_name=str(fc.name),
                            args=dict(fc.args or {}),
                        )
                        continue
                    text = getattr(part, "text", None)
                    if not text:
                        continue
                    if getattr(part, "thought", False):
                        yield ReasoningDelta(text)
                    else:
                        yield TextDelta(text)
                reason = getattr(candidate, "finish_reason", None)
                if reason is not None:
                    finish_reason = getattr(reason, "name", str(reason))
        except asyncio.CancelledError:
            raise
        except APIError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=self.provider,
                phase="stream",
                message="Gemini stream failed",
            ) from e

        if saw_tool_call and finish_reason == "STOP":
            normalized = "tool-calls"
        else:
            normalized = _FINISH_REASONS.get(finish_reason or "", "unknown")
        yield Finish(finish_reason=normalized, usage=usage)


def _map_tool_choice(tool_choice: Any) -> dict[str, Any] | None:
    if isinstance(tool_choice, str):
        mode = {"auto": "AUTO", "required": "ANY", "none": "NONE"}.get(tool_choice)
        if mode is not None:
            return {"function_calling_config": {"mode": mode}}
    elif isinstance(tool_choice, dict) and "name" in tool_choice:
        # Force specific function
        return {
            "function_calling_config": {
                "mode": "ANY",
                "allowed_function_names": [tool_choice["name"]],
            }
        }
    return None


def _media_part(value: str, mime_type: str | None) -> Any:
    from google.genai import types

    if is_url(value):
        return types.Part.from_uri(file_uri=value, mime_type=mime_type)
    embedded_mime, payload = split_data_url(value)
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise APIError(
            "Media part is neither a URL nor valid base64 data",
            hint="Pass an http(s) URL, a data URL or base64-encoded bytes.",
        ) from e
    return types.Part.from_bytes(
        data=data, mime_type=embedded_mime or mime_type or "application/octet-stream"
    )


def _convert_part(part: Any) -> Any:
    """Convert a message part to a google-genai SDK part."""
    from google.genai import types

    if isinstance(part, TextPart):
        return types.Part.from_text(text=part.text)
    if isinstance(part, ImagePart):
        return _media_part(part.image, part.mime_type)
    if isinstance(part, FilePart):
        return _media_part(part.data, part.mime_type)
    if isinstance(part, ToolCallPart):
        return types.Part.from_function_call(name=part.tool_name, args=part.args)
    if isinstance(part, ToolResultPart):
        response = part.result if isinstance(part.result, dict) else {"result": part.result}
        if part.is_error:
            response = {"error": response}
        return types.Part.from_function_response(name=part.tool_name, response=response)
    raise APIError(f"Unsupported part for Gemini input: {part!r}")


def _build_contents(messages: list[Message]) -> list[Any]:
    """Build contents with strict user/model alternation.

    Function responses travel as user turns; consecutive same-role turns are
    merged into one Content.
    """
    from google.genai import types

    contents: list[Any] = []
    for message in messages:
        role = "model" if message.role == "assistant" else "user"
        parts = [_convert_part(p) for p in message.parts]
        if not parts:
            continue
        if contents and contents[-1].role == role:
            contents[-1].parts.extend(parts)
        else:
            contents.append(types.Content(role=role, parts=parts))
    return contents
