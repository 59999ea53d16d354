"""Shared utilities for provider adapters."""

from __future__ import annotations

from copy import deepcopy
import json
from typing import TYPE_CHECKING, Any

from switchyard.errors import APIError, ConfigurationError
from switchyard.messages import TextPart

if TYPE_CHECKING:
    from switchyard.config import VertexConfiguration
    from switchyard.messages import Message
    from switchyard.providers.models import ModelCall


def to_strict_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Normalize a JSON schema for strict structured-output requirements.

    Ensures that for all 'object' types:
    1. additionalProperties is False
    2. All defined properties are listed in 'required'
    """
    normalized = deepcopy(schema)

    def walk(node: Any) -> Any:
        if isinstance(node, list):
            return [walk(item) for item in node]
        if not isinstance(node, dict):
            return node

        updated: dict[str, Any] = {key: walk(value) for key, value in node.items()}

        if updated.get("type") == "object" or "properties" in updated:
            properties = updated.get("properties", {})
            if isinstance(properties, dict):
                updated["additionalProperties"] = False
                if "required" not in updated:
                    updated["required"] = list(properties.keys())

        return updated

    result = walk(normalized)
    if not isinstance(result, dict):
        raise APIError("Invalid response schema: expected object schema")
    return result


_CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


def vertex_credentials(vertex: VertexConfiguration) -> Any | None:
    """Service-account credentials for *vertex*; ``None`` means ADC."""
    if vertex.google_credentials is None:
        return None
    from google.oauth2 import service_account

    info = vertex.google_credentials.service_account_info(vertex.project)
    try:
        return service_account.Credentials.from_service_account_info(
            info, scopes=[_CLOUD_PLATFORM_SCOPE]
        )
    except ValueError as e:
        raise ConfigurationError(
            "Invalid Vertex google_credentials",
            hint="Pass the client_email and private_key of a service-account key.",
        ) from e


def provider_extras(call: ModelCall, provider: str) -> dict[str, Any]:
    """Return the ``provider_options`` entry addressed to *provider*.

    Options are namespaced by provider name so one config can carry routing
    hints for several providers: ``{"openai": {"user": "u-1"}}``.
    """
    options = call.provider_options or {}
    extras = options.get(provider)
    return dict(extras) if isinstance(extras, dict) else {}


def is_url(value: str) -> bool:
    return value.startswith(("http://", "https://"))


def data_url(data: str, mime_type: str | None) -> str:
    """Return *data* as a URL: remote and data URLs unchanged, base64 wrapped."""
    if is_url(data) or data.startswith("data:"):
        return data
    return f"data:{mime_type or 'application/octet-stream'};base64,{data}"


def split_data_url(value: str) -> tuple[str | None, str]:
    """Split ``data:<mime>;base64,<payload>`` into ``(mime, payload)``."""
    if not value.startswith("data:") or "," not in value:
        return None, value
    header, payload = value[5:].split(",", 1)
    return header.split(";", 1)[0] or None, payload


def serialize_tool_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


def split_system(messages: tuple[Message, ...]) -> tuple[str | None, list[Message]]:
    """Pull leading system messages out as one instruction string."""
    system: list[str] = []
    rest = list(messages)
    while rest and rest[0].role == "system":
        system.append("".join(p.text for p in rest.pop(0).parts if isinstance(p, TextPart)))
    text = "\n\n".join(s for s in system if s)
    return (text or None), rest


def parse_tool_args(raw: str | None) -> dict[str, Any]:
    """Decode streamed tool-call arguments; malformed JSON is an APIError."""
    if not raw:
        return {}
    try:
        args = json.loads(raw)
    except ValueError as e:
        raise APIError(
            f"Model returned malformed tool-call arguments: {raw[:120]!r}"
        ) from e
    if not isinstance(args, dict):
        raise APIError("Model returned non-object tool-call arguments")
    return args
