"""Provider adapter contracts: request shapes and stream event conversion.

SDK clients are replaced with fakes so these run without network access.
"""

from __future__ import annotations

import base64
from types import SimpleNamespace as NS
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from switchyard.config import (
    AmazonBedrockConfiguration,
    GoogleCredentials,
    ProviderDescriptor,
    VertexConfiguration,
)
from switchyard.errors import APIError, ConfigurationError, RateLimitError
from switchyard.messages import (
    FilePart,
    ImagePart,
    Message,
    ToolCallPart,
    ToolResultPart,
)
from switchyard.providers import (
    AnthropicBedrockModel,
    AnthropicModel,
    AnthropicVertexModel,
    GeminiModel,
    OpenAIChatModel,
    OpenAIResponsesModel,
    resolve_provider,
)
from switchyard.providers._utils import vertex_credentials
from switchyard.providers.models import (
    Finish,
    ModelCall,
    ReasoningDelta,
    ResponseFormat,
    TextDelta,
    ToolCall,
    Usage,
)
from switchyard.providers.openai import COMPATIBLE_BASE_URLS
from switchyard.rules import ANTHROPIC_DEFAULT_MAX_TOKENS
from switchyard.tools import Tool
from tests.helpers import collect

pytestmark = pytest.mark.contract

LOOKUP = Tool(
    name="lookup",
    description="Look something up.",
    parameters={"type": "object", "properties": {"q": {"type": "string"}}},
)
SCHEMA = {"type": "object", "properties": {"a": {"type": "string"}}}


async def _aiter(items: list[Any]):
    for item in items:
        yield item


class _SdkError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.response = NS(status_code=status_code, headers={})


def _conversation() -> tuple[Message, ...]:
    return (
        Message(role="system", content="Be brief."),
        Message(role="user", content="hi"),
        Message(
            role="assistant",
            content=(ToolCallPart(tool_call_id="c1", tool_name="lookup", args={"q": "x"}),),
        ),
        Message(
            role="tool",
            content=(ToolResultPart(tool_call_id="c1", tool_name="lookup", result={"v": 1}),),
        ),
        Message(role="user", content="thanks"),
    )


# =============================================================================
# Adapter selection
# =============================================================================


@pytest.mark.parametrize(
    ("provider", "model_type"),
    [
        ("openai", OpenAIResponsesModel),
        ("anthropic", AnthropicModel),
        ("google", GeminiModel),
        ("groq", OpenAIChatModel),
        ("mistral", OpenAIChatModel),
        ("xai", OpenAIChatModel),
        ("deepseek", OpenAIChatModel),
        ("perplexity", OpenAIChatModel),
    ],
)
def test_resolve_provider_maps_every_provider_to_an_adapter(
    provider: str, model_type: type
) -> None:
    factory = resolve_provider(ProviderDescriptor(provider=provider, api_key="k"))

    model = factory("model-x", temperature=0.1)

    assert isinstance(model, model_type)
    assert model.provider == provider
    assert model.model_id == "model-x"


def test_compatible_providers_default_to_their_public_endpoint() -> None:
    model = resolve_provider({"provider": "mistral", "apiKey": "k"})("m")

    assert model.base_url == COMPATIBLE_BASE_URLS["mistral"]


def test_custom_provider_uses_the_given_base_url() -> None:
    factory = resolve_provider(
        {"provider": "custom", "api_key": "k", "baseUrl": "http://localhost:8000/v1"}
    )

    model = factory("local-llm")

    assert isinstance(model, OpenAIChatModel)
    assert model.base_url == "http://localhost:8000/v1"


def test_anthropic_factory_receives_cache_control() -> None:
    factory = resolve_provider(ProviderDescriptor(provider="anthropic", api_key="k"))

    assert factory("claude", cache_control=True).cache_control is True
    assert factory("claude").cache_control is False


@pytest.mark.parametrize(
    ("provider", "fragment"),
    [
        ({"provider": "openai", "api_key": ""}, "API key required"),
        ({"provider": "custom", "api_key": "k"}, "base_url"),
        ({"provider": "openai", "api_key": "k", "extra": 1}, "Invalid provider"),
        ("openai", "Invalid provider"),
    ],
)
def test_resolve_provider_rejects_unusable_descriptors(provider: Any, fragment: str) -> None:
    with pytest.raises(ConfigurationError, match=fragment):
        resolve_provider(provider)


def test_chat_model_without_known_endpoint_fails() -> None:
    with pytest.raises(APIError, match="No endpoint"):
        OpenAIChatModel("m", provider="custom", api_key="k")


VERTEX = {"project": "proj", "location": "us-east5"}
BEDROCK = {"region": "us-east-1", "access_key_id": "AKIA", "secret_access_key": "shh"}


class _ClientRecorder:
    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs


@pytest.mark.parametrize(
    ("provider", "configuration", "model_type"),
    [
        ("google_vertex", VERTEX, GeminiModel),
        ("anthropic_vertex", VERTEX, AnthropicVertexModel),
        ("amazon_bedrock", BEDROCK, AnthropicBedrockModel),
    ],
)
def test_resolve_provider_maps_cloud_hosted_variants(
    provider: str, configuration: dict, model_type: type
) -> None:
    factory = resolve_provider({"provider": provider, "configuration": configuration})

    model = factory("model-x", cache_control=True)

    assert isinstance(model, model_type)
    assert model.provider == provider
    assert model.model_id == "model-x"


@pytest.mark.parametrize(
    ("provider", "fragment"),
    [
        ({"provider": "google_vertex"}, "Vertex configuration"),
        ({"provider": "anthropic_vertex", "api_key": "k"}, "Vertex configuration"),
        ({"provider": "amazon_bedrock"}, "Amazon Bedrock configuration"),
        (
            ProviderDescriptor(
                provider="amazon_bedrock",
                configuration=VertexConfiguration(project="p", location="l"),
            ),
            "Amazon Bedrock configuration",
        ),
    ],
)
def test_cloud_hosted_variants_require_their_configuration(
    provider: Any, fragment: str
) -> None:
    with pytest.raises(ConfigurationError, match=fragment):
        resolve_provider(provider)


def test_anthropic_vertex_client_uses_project_and_region(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    import anthropic

    monkeypatch.setattr(anthropic, "AsyncAnthropicVertex", _ClientRecorder)
    model = AnthropicVertexModel(
        "claude-test", vertex=VertexConfiguration(project="proj", location="us-east5")
    )

    client = model._get_client()

    assert client.kwargs == {
        "project_id": "proj",
        "region": "us-east5",
        "credentials": None,
        "base_url": None,
    }
    assert model._get_client() is client


def test_bedrock_client_uses_region_and_static_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    import anthropic

    monkeypatch.setattr(anthropic, "AsyncAnthropicBedrock", _ClientRecorder)
    model = AnthropicBedrockModel(
        "anthropic.claude-test",
        bedrock=AmazonBedrockConfiguration(
            region="us-east-1", access_key_id="AKIA", secret_access_key="shh"
        ),
    )

    client = model._get_client()

    assert client.kwargs == {
        "aws_region": "us-east-1",
        "aws_access_key": "AKIA",
        "aws_secret_key": "shh",
        "aws_session_token": None,
        "base_url": None,
    }


def test_gemini_vertex_client_uses_service_account_credentials(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    from google import genai
    from google.oauth2 import service_account

    seen: dict[str, Any] = {}

    def fake_from_info(info: dict[str, Any], scopes: list[str]) -> str:
        seen.update(info=info, scopes=scopes)
        return "sa-credentials"

    monkeypatch.setattr(genai, "Client", _ClientRecorder)
    monkeypatch.setattr(
        service_account.Credentials, "from_service_account_info", fake_from_info
    )
    vertex = VertexConfiguration(
        project="proj",
        location="us-central1",
        google_credentials=GoogleCredentials(client_email="sa@proj", private_key="pk"),
    )

    client = GeminiModel("gemini-test", vertex=vertex)._get_client()

    assert client.kwargs == {
        "vertexai": True,
        "project": "proj",
        "location": "us-central1",
        "credentials": "sa-credentials",
        "http_options": None,
    }
    assert seen["info"]["client_email"] == "sa@proj"
    assert seen["info"]["token_uri"] == "https://oauth2.googleapis.com/token"
    assert seen["scopes"] == ["https://www.googleapis.com/auth/cloud-platform"]


def test_invalid_service_account_key_is_a_configuration_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    from google.oauth2 import service_account

    def reject(info: dict[str, Any], scopes: list[str]) -> None:
        raise ValueError("Could not deserialize key data")

    monkeypatch.setattr(service_account.Credentials, "from_service_account_info", reject)
    vertex = VertexConfiguration(
        project="proj",
        location="us-central1",
        google_credentials=GoogleCredentials(client_email="sa@proj", private_key="junk"),
    )

    with pytest.raises(ConfigurationError, match="google_credentials"):
        vertex_credentials(vertex)


@pytest.mark.asyncio
async def test_bedrock_stream_reads_its_own_provider_options() -> None:
    events = [
        NS(type="message_start", message=NS(id="msg_9", usage=NS(input_tokens=2, output_tokens=0))),
        NS(type="content_block_delta", index=0, delta=NS(type="text_delta", text="ok")),
        NS(type="message_delta", delta=NS(stop_reason="end_turn"), usage=NS(output_tokens=1)),
    ]
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=_aiter(events))
    model = AnthropicBedrockModel(
        "anthropic.claude-test", bedrock=AmazonBedrockConfiguration(region="us-east-1")
    )
    model._client = client
    call = ModelCall(
        messages=(Message(role="user", content="hi"),),
        provider_options={
            "amazon_bedrock": {"metadata": {"user_id": "u-1"}},
            "anthropic": {"metadata": {"user_id": "ignored"}},
        },
    )

    chunks = await collect(model.stream(call))

    assert client.messages.create.call_args.kwargs["metadata"] == {"user_id": "u-1"}
    assert chunks[-1].provider_metadata == {"amazon_bedrock": {"message_id": "msg_9"}}


# =============================================================================
# OpenAI Responses API
# =============================================================================


def test_responses_request_shape() -> None:
    model = OpenAIResponsesModel("gpt-test", api_key="k")
    call = ModelCall(
        messages=_conversation(),
        tools={"lookup": LOOKUP},
        tool_choice={"name": "lookup"},
        temperature=0.2,
        max_tokens=100,
        response_format=ResponseFormat(schema=SCHEMA),
        provider_options={"openai": {"user": "u-1"}, "anthropic": {"ignored": True}},
    )

    kwargs = model.build_request(call)

    assert kwargs["model"] == "gpt-test"
    assert kwargs["input"][:2] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": [{"type": "input_text", "text": "hi"}]},
    ]
    assert kwargs["input"][2] == {
        "type": "function_call",
        "call_id": "c1",
        "name": "lookup",
        "arguments": '{"q": "x"}',
    }
    assert kwargs["input"][3] == {
        "type": "function_call_output",
        "call_id": "c1",
        "output": '{"v": 1}',
    }
    assert kwargs["temperature"] == 0.2
    assert kwargs["max_output_tokens"] == 100
    assert kwargs["tools"][0]["strict"] is False
    assert kwargs["tool_choice"] == {"type": "function", "name": "lookup"}
    fmt = kwargs["text"]["format"]
    assert fmt["type"] == "json_schema"
    assert fmt["strict"] is True
    assert fmt["schema"]["additionalProperties"] is False
    assert fmt["schema"]["required"] == ["a"]
    assert kwargs["user"] == "u-1"
    assert "ignored" not in kwargs


def test_responses_request_without_schema_asks_for_json_object() -> None:
    model = OpenAIResponsesModel("gpt-test", api_key="k")
    call = ModelCall(
        messages=(Message(role="user", content="hi"),),
        response_format=ResponseFormat(schema=None),
    )

    assert model.build_request(call)["text"] == {"format": {"type": "json_object"}}


def test_responses_input_encodes_attachments() -> None:
    model = OpenAIResponsesModel("gpt-test", api_key="k")
    call = ModelCall(
        messages=(
            Message(
                role="user",
                content=(
                    ImagePart(image="aGVsbG8=", mime_type="image/png"),
                    FilePart(data="https://x/doc.pdf", mime_type="application/pdf"),
                ),
            ),
        )
    )

    content = model.build_request(call)["input"][0]["content"]

    assert content[0] == {"type": "input_image", "image_url": "data:image/png;base64,aGVsbG8="}
    assert content[1] == {"type": "input_file", "file_url": "https://x/doc.pdf"}


@pytest.mark.asyncio
async def test_responses_stream_converts_events() -> None:
    events = [
        NS(type="response.reasoning_summary_text.delta", delta="plan"),
        NS(type="response.output_text.delta", delta="Hel"),
        NS(type="response.output_text.delta", delta="lo"),
        NS(
            type="response.output_item.done",
            item=NS(type="function_call", call_id="call_1", name="lookup", arguments='{"q": "x"}'),
        ),
        NS(
            type="response.completed",
            response=NS(
                status="completed",
                id="resp_1",
                usage=NS(
                    input_tokens=5,
                    output_tokens=3,
                    total_tokens=8,
                    output_tokens_details=NS(reasoning_tokens=1),
                ),
            ),
        ),
    ]
    client = MagicMock()
    client.responses.create = AsyncMock(return_value=_aiter(events))
    model = OpenAIResponsesModel("gpt-test", api_key="k")
    model._client = client

    chunks = await collect(model.stream(ModelCall(messages=(Message(role="user", content="hi"),))))

    assert chunks == [
        ReasoningDelta("plan"),
        TextDelta("Hel"),
        TextDelta("lo"),
        ToolCall(tool_call_id="call_1", tool_name="lookup", args={"q": "x"}),
        Finish(
            finish_reason="tool-calls",
            usage=Usage(input_tokens=5, output_tokens=3, total_tokens=8, reasoning_tokens=1),
            provider_metadata={"openai": {"response_id": "resp_1"}},
        ),
    ]
    assert client.responses.create.await_args.kwargs["stream"] is True


@pytest.mark.asyncio
async def test_responses_incomplete_maps_to_length() -> None:
    events = [
        NS(
            type="response.incomplete",
            response=NS(status="incomplete", incomplete_details=NS(reason="max_output_tokens")),
        )
    ]
    client = MagicMock()
    client.responses.create = AsyncMock(return_value=_aiter(events))
    model = OpenAIResponsesModel("gpt-test", api_key="k")
    model._client = client

    chunks = await collect(model.stream(ModelCall(messages=())))

    assert chunks == [Finish(finish_reason="length")]


@pytest.mark.asyncio
async def test_responses_failed_event_raises_api_error() -> None:
    events = [NS(type="response.failed", response=NS(error=NS(message="overloaded")))]
    client = MagicMock()
    client.responses.create = AsyncMock(return_value=_aiter(events))
    model = OpenAIResponsesModel("gpt-test", api_key="k")
    model._client = client

    with pytest.raises(APIError, match="overloaded"):
        await collect(model.stream(ModelCall(messages=())))


@pytest.mark.asyncio
async def test_sdk_errors_are_wrapped_with_status_metadata() -> None:
    client = MagicMock()
    client.responses.create = AsyncMock(side_effect=_SdkError("rate limited", 429))
    model = OpenAIResponsesModel("gpt-test", api_key="k")
    model._client = client

    with pytest.raises(RateLimitError) as excinfo:
        await collect(model.stream(ModelCall(messages=())))

    assert excinfo.value.provider == "openai"
    assert excinfo.value.phase == "stream"
    assert excinfo.value.status_code == 429


# =============================================================================
# OpenAI-compatible chat completions
# =============================================================================


def test_chat_request_shape() -> None:
    model = OpenAIChatModel("llama", provider="groq", api_key="k")
    call = ModelCall(
        messages=_conversation(),
        tools={"lookup": LOOKUP},
        tool_choice="required",
        max_tokens=64,
        seed=7,
        stop_sequences=("END",),
        response_format=ResponseFormat(schema=None),
        provider_options={"groq": {"service_tier": "flex"}},
    )

    kwargs = model.build_request(call)

    assert kwargs["stream_options"] == {"include_usage": True}
    assert kwargs["messages"][1] == {"role": "user", "content": "hi"}
    assert kwargs["messages"][2] == {
        "role": "assistant",
        "content": None,
        "tool_calls": [
            {
                "id": "c1",
                "type": "function",
                "function": {"name": "lookup", "arguments": '{"q": "x"}'},
            }
        ],
    }
    assert kwargs["messages"][3] == {"role": "tool", "tool_call_id": "c1", "content": '{"v": 1}'}
    assert kwargs["tools"][0]["function"]["name"] == "lookup"
    assert kwargs["tool_choice"] == "required"
    assert kwargs["max_tokens"] == 64
    assert kwargs["seed"] == 7
    assert kwargs["stop"] == ["END"]
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["service_tier"] == "flex"


@pytest.mark.asyncio
async def test_chat_stream_assembles_tool_call_fragments() -> None:
    def choice(content=None, tool_calls=None, finish_reason=None):
        return NS(
            delta=NS(content=content, tool_calls=tool_calls, reasoning_content=None),
            finish_reason=finish_reason,
        )

    chunks_in = [
        NS(usage=None, choices=[choice(content="Hi")]),
        NS(
            usage=None,
            choices=[
                choice(
                    tool_calls=[
                        NS(index=0, id="call_1", function=NS(name="lookup", arguments='{"q":'))
                    ]
                )
            ],
        ),
        NS(
            usage=None,
            choices=[
                choice(
                    tool_calls=[NS(index=0, id=None, function=NS(name=None, arguments=' "x"}'))],
                    finish_reason="tool_calls",
                )
            ],
        ),
        NS(usage=NS(prompt_tokens=4, completion_tokens=6, total_tokens=10), choices=[]),
    ]
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=_aiter(chunks_in))
    model = OpenAIChatModel("llama", provider="groq", api_key="k")
    model._client = client

    chunks = await collect(model.stream(ModelCall(messages=())))

    assert chunks == [
        TextDelta("Hi"),
        ToolCall(tool_call_id="call_1", tool_name="lookup", args={"q": "x"}),
        Finish(
            finish_reason="tool-calls",
            usage=Usage(input_tokens=4, output_tokens=6, total_tokens=10),
        ),
    ]


@pytest.mark.asyncio
async def test_chat_stream_rejects_malformed_tool_arguments() -> None:
    chunks_in = [
        NS(
            usage=None,
            choices=[
                NS(
                    delta=NS(
                        content=None,
                        reasoning_content=None,
                        tool_calls=[NS(index=0, id="c", function=NS(name="t", arguments="{oops"))],
                    ),
                    finish_reason="tool_calls",
                )
            ],
        )
    ]
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=_aiter(chunks_in))
    model = OpenAIChatModel("llama", provider="groq", api_key="k")
    model._client = client

    with pytest.raises(APIError, match="malformed tool-call arguments"):
        await collect(model.stream(ModelCall(messages=())))


# =============================================================================
# Anthropic
# =============================================================================


def test_anthropic_request_shape() -> None:
    model = AnthropicModel("claude-test", api_key="k")
    call = ModelCall(
        messages=_conversation(),
        tools={"lookup": LOOKUP},
        tool_choice="required",
        temperature=0.5,
        top_k=20,
        response_format=ResponseFormat(schema=SCHEMA),
    )

    kwargs = model.build_request(call)

    assert kwargs["system"] == "Be brief."
    assert kwargs["max_tokens"] == ANTHROPIC_DEFAULT_MAX_TOKENS
    assert [m["role"] for m in kwargs["messages"]] == ["user", "assistant", "user"]
    # Tool result and the follow-up prompt merge into one user turn.
    assert [b["type"] for b in kwargs["messages"][2]["content"]] == ["tool_result", "text"]
    assert kwargs["messages"][1]["content"][0] == {
        "type": "tool_use",
        "id": "c1",
        "name": "lookup",
        "input": {"q": "x"},
    }
    assert kwargs["tools"][0]["input_schema"] == LOOKUP.parameters
    assert kwargs["tool_choice"] == {"type": "any"}
    assert kwargs["temperature"] == 0.5
    assert kwargs["top_k"] == 20
    assert kwargs["output_config"]["format"]["schema"]["required"] == ["a"]


def test_anthropic_cache_control_marks_system_and_last_block() -> None:
    model = AnthropicModel("claude-test", api_key="k", cache_control=True)
    call = ModelCall(messages=_conversation(), max_tokens=10)

    kwargs = model.build_request(call)

    assert kwargs["max_tokens"] == 10
    assert kwargs["system"] == [
        {"type": "text", "text": "Be brief.", "cache_control": {"type": "ephemeral"}}
    ]
    last_block = kwargs["messages"][-1]["content"][-1]
    assert last_block["cache_control"] == {"type": "ephemeral"}


def test_anthropic_no_schema_output_adds_json_instruction() -> None:
    model = AnthropicModel("claude-test", api_key="k")
    call = ModelCall(
        messages=(Message(role="user", content="list three colors"),),
        response_format=ResponseFormat(schema=None),
    )

    kwargs = model.build_request(call)

    assert "JSON" in kwargs["system"]
    assert "output_config" not in kwargs


def test_anthropic_rejects_unsupported_documents() -> None:
    model = AnthropicModel("claude-test", api_key="k")
    call = ModelCall(
        messages=(
            Message(
                role="user",
                content=(FilePart(data="AAAA", mime_type="application/zip"),),
            ),
        )
    )

    with pytest.raises(APIError, match="Unsupported mime type"):
        model.build_request(call)


@pytest.mark.asyncio
async def test_anthropic_stream_converts_events() -> None:
    events = [
        NS(
            type="message_start",
            message=NS(id="msg_1", usage=NS(input_tokens=10, output_tokens=1)),
        ),
        NS(type="content_block_start", index=0, content_block=NS(type="thinking")),
        NS(type="content_block_delta", index=0, delta=NS(type="thinking_delta", thinking="hmm")),
        NS(type="content_block_stop", index=0),
        NS(type="content_block_start", index=1, content_block=NS(type="text")),
        NS(type="content_block_delta", index=1, delta=NS(type="text_delta", text="Hi")),
        NS(type="content_block_stop", index=1),
        NS(
            type="content_block_start",
            index=2,
            content_block=NS(type="tool_use", id="tu_1", name="lookup"),
        ),
        NS(
            type="content_block_delta",
            index=2,
            delta=NS(type="input_json_delta", partial_json='{"q": '),
        ),
        NS(
            type="content_block_delta",
            index=2,
            delta=NS(type="input_json_delta", partial_json='"x"}'),
        ),
        NS(type="content_block_stop", index=2),
        NS(type="message_delta", delta=NS(stop_reason="tool_use"), usage=NS(output_tokens=7)),
        NS(type="message_stop"),
    ]
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=_aiter(events))
    model = AnthropicModel("claude-test", api_key="k")
    model._client = client

    chunks = await collect(model.stream(ModelCall(messages=(Message(role="user", content="hi"),))))

    assert chunks == [
        ReasoningDelta("hmm"),
        TextDelta("Hi"),
        ToolCall(tool_call_id="tu_1", tool_name="lookup", args={"q": "x"}),
        Finish(
            finish_reason="tool-calls",
            usage=Usage(input_tokens=10, output_tokens=7, total_tokens=17),
            provider_metadata={"anthropic": {"message_id": "msg_1"}},
        ),
    ]


@pytest.mark.asyncio
async def test_anthropic_auth_failure_carries_credential_hint() -> None:
    client = MagicMock()
    client.messages.create = AsyncMock(side_effect=_SdkError("invalid x-api-key", 401))
    model = AnthropicModel("claude-test", api_key="bad")
    model._client = client

    with pytest.raises(APIError) as excinfo:
        await collect(model.stream(ModelCall(messages=())))

    assert excinfo.value.status_code == 401
    assert excinfo.value.hint is not None
    assert "ANTHROPIC_API_KEY" in excinfo.value.hint


# =============================================================================
# Gemini
# =============================================================================


def test_gemini_request_shape() -> None:
    model = GeminiModel("gemini-test", api_key="k")
    call = ModelCall(
        messages=_conversation(),
        tools={"lookup": LOOKUP},
        tool_choice={"name": "lookup"},
        max_tokens=50,
        response_format=ResponseFormat(schema=SCHEMA),
    )

    kwargs = model.build_request(call)

    config = kwargs["config"]
    assert kwargs["model"] == "gemini-test"
    assert config.system_instruction == "Be brief."
    assert config.max_output_tokens == 50
    assert config.response_mime_type == "application/json"
    assert config.response_json_schema == SCHEMA
    assert config.tools[0].function_declarations[0].name == "lookup"
    assert config.tool_config.function_calling_config.allowed_function_names == ["lookup"]
    # Function responses travel as user turns and merge with the next prompt.
    assert [c.role for c in kwargs["contents"]] == ["user", "model", "user"]
    assert len(kwargs["contents"][2].parts) == 2


def test_gemini_media_parts_accept_urls_and_base64() -> None:
    model = GeminiModel("gemini-test", api_key="k")
    encoded = base64.b64encode(b"png-bytes").decode()
    call = ModelCall(
        messages=(
            Message(
                role="user",
                content=(
                    ImagePart(image=encoded, mime_type="image/png"),
                    FilePart(data="https://x/doc.pdf", mime_type="application/pdf"),
                ),
            ),
        )
    )

    parts = model.build_request(call)["contents"][0].parts

    assert parts[0].inline_data.data == b"png-bytes"
    assert parts[0].inline_data.mime_type == "image/png"
    assert parts[1].file_data.file_uri == "https://x/doc.pdf"


def test_gemini_rejects_undecodable_media() -> None:
    model = GeminiModel("gemini-test", api_key="k")
    call = ModelCall(
        messages=(Message(role="user", content=(ImagePart(image="not base64!"),)),)
    )

    with pytest.raises(APIError, match="neither a URL nor valid base64"):
        model.build_request(call)


@pytest.mark.asyncio
async def test_gemini_stream_converts_chunks() -> None:
    def part(text=None, thought=False, function_call=None):
        return NS(text=text, thought=thought, function_call=function_call)

    chunks_in = [
        NS(
            usage_metadata=None,
            candidates=[
                NS(
                    content=NS(parts=[part("think", thought=True), part("Hi")]),
                    finish_reason=None,
                )
            ],
        ),
        NS(
            usage_metadata=NS(
                prompt_token_count=3,
                candidates_token_count=4,
                total_token_count=7,
                thoughts_token_count=None,
            ),
            candidates=[
                NS(
                    content=NS(
                        parts=[
                            part(function_call=NS(id="fc1", name="lookup", args={"q": "x"}))
                        ]
                    ),
                    finish_reason=NS(name="STOP"),
                )
            ],
        ),
    ]
    client = MagicMock()
    client.aio.models.generate_content_stream = AsyncMock(return_value=_aiter(chunks_in))
    model = GeminiModel("gemini-test", api_key="k")
    model._client = client

    chunks = await collect(model.stream(ModelCall(messages=(Message(role="user", content="hi"),))))

    assert chunks == [
        ReasoningDelta("think"),
        TextDelta("Hi"),
        ToolCall(tool_call_id="fc1", tool_name="lookup", args={"q": "x"}),
        Finish(
            finish_reason="tool-calls",
            usage=Usage(input_tokens=3, output_tokens=4, total_tokens=7),
        ),
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("reason", "expected"),
    [("MAX_TOKENS", "length"), ("SAFETY", "content-filter"), ("OTHER", "unknown")],
)
async def test_gemini_finish_reasons_are_normalized(reason: str, expected: str) -> None:
    chunks_in = [
        NS(
            usage_metadata=None,
            candidates=[NS(content=NS(parts=[]), finish_reason=NS(name=reason))],
        )
    ]
    client = MagicMock()
    client.aio.models.generate_content_stream = AsyncMock(return_value=_aiter(chunks_in))
    model = GeminiModel("gemini-test", api_key="k")
    model._client = client

    chunks = await collect(model.stream(ModelCall(messages=())))

    assert chunks == [Finish(finish_reason=expected)]
