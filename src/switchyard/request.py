"""Request normalization: caller input → validated `GenerationRequest`."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from switchyard.config import GenerationConfig
from switchyard.errors import ConfigurationError, RequestError
from switchyard.messages import coerce_messages
from switchyard.providers import coerce_descriptor

if TYPE_CHECKING:
    from collections.abc import Sequence

    from switchyard.abort import AbortSignal
    from switchyard.config import ProviderDescriptor
    from switchyard.messages import Message
    from switchyard.streaming import ObjectOutput, SchemaInput
    from switchyard.telemetry import TelemetrySettings

_OUTPUT_MODES = ("object", "array", "no-schema")


@dataclass(frozen=True)
class GenerationRequest:
    """One invocation's inputs.

    Example:
        request = GenerationRequest(
            provider=ProviderDescriptor(provider="openai", api_key="sk-..."),
            config=GenerationConfig(model="gpt-4o-mini"),
            prompt="Say hello",
        )
    """

    provider: ProviderDescriptor
    config: GenerationConfig
    messages: tuple[Message, ...] = ()
    prompt: str | None = None
    #: JSON-Schema dict or pydantic model; only used together with ``output``.
    schema: SchemaInput | None = None
    output: ObjectOutput | None = None
    abort_signal: AbortSignal | None = None
    telemetry: TelemetrySettings | None = None

    @property
    def is_object_mode(self) -> bool:
        """Whether this request streams a structured object.

        Needs both a schema and an output mode; either alone streams text.
        """
        return self.output is not None and self.schema is not None


def _check_schema(schema: Any) -> None:
    if schema is None or isinstance(schema, dict):
        return
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return
    raise RequestError(
        f"schema must be a JSON schema dict or a Pydantic model class, "
        f"got {type(schema).__name__}",
        hint="Pass schema=MyModel or schema={'type': 'object', ...}.",
    )


def normalize_request(
    *,
    provider: ProviderDescriptor | dict[str, Any],
    config: GenerationConfig | dict[str, Any],
    messages: Sequence[Message | dict[str, Any]] | None = None,
    prompt: str | None = None,
    schema: SchemaInput | None = None,
    output: ObjectOutput | None = None,
    abort_signal: AbortSignal | None = None,
    telemetry: TelemetrySettings | None = None,
) -> GenerationRequest:
    """Validate and normalize inputs into a `GenerationRequest`.

    Plain dicts are accepted for the provider, the config and each message.
    A schema on the config is used when none is passed explicitly.

    Raises:
        ConfigurationError: If the provider or config is invalid.
        RequestError: If both messages and a prompt are given, or the
            message/schema/output shapes are invalid.
    """
    descriptor = coerce_descriptor(provider)

    if isinstance(config, dict):
        config = GenerationConfig.from_dict(config)
    elif not isinstance(config, GenerationConfig):
        raise ConfigurationError(
            f"config must be a GenerationConfig or dict, got {type(config).__name__}",
            hint="Pass GenerationConfig(model=...).",
        )

    turns = coerce_messages(list(messages)) if messages is not None else ()
    if prompt is not None:
        if not isinstance(prompt, str):
            raise RequestError(f"prompt must be a string, got {type(prompt).__name__}")
        if turns:
            raise RequestError(
                "Pass either prompt or messages, not both",
                hint="Fold the prompt into the message list as a user message.",
            )

    if schema is None:
        schema = config.schema
    _check_schema(schema)
    if output is not None and output not in _OUTPUT_MODES:
        raise RequestError(
            f"Unknown output mode: {output!r}",
            hint=f"Use one of: {', '.join(_OUTPUT_MODES)}.",
        )

    return GenerationRequest(
        provider=descriptor,
        config=config,
        messages=turns,
        prompt=prompt,
        schema=schema,
        output=output,
        abort_signal=abort_signal,
        telemetry=telemetry,
    )
