"""Invocation orchestrator: rules → adapter → tools → streaming backend.

`ai()` never raises for expected failures. Every failure, including
unexpected defects, comes back as ``Failure(ChainError)``.
"""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import TYPE_CHECKING, Any

from switchyard.errors import ChainError, RunErrorCode
from switchyard.providers import resolve_provider
from switchyard.request import normalize_request
from switchyard.result import Failure, ObjectResult, Success, TextResult
from switchyard.rules import apply_all_rules
from switchyard.smoothing import smooth_stream
from switchyard.streaming import DefaultStreamingBackend
from switchyard.telemetry import TelemetrySettings
from switchyard.tools import build_tools
from switchyard.translate import translate_error

if TYPE_CHECKING:
    from collections.abc import Sequence

    from switchyard.abort import AbortSignal
    from switchyard.config import GenerationConfig, ProviderDescriptor
    from switchyard.messages import Message
    from switchyard.providers.base import LanguageModel
    from switchyard.request import GenerationRequest
    from switchyard.result import InvocationResult, Result
    from switchyard.rules import RuleViolation
    from switchyard.streaming import ObjectOutput, SchemaInput, StreamingBackend

logger = logging.getLogger(__name__)

_default_backend = DefaultStreamingBackend()

# Config fields that never reach the adapter factory.
_FACTORY_EXCLUDED = ("provider_options", "model", "cache_control")


def _violation_error(violations: tuple[RuleViolation, ...]) -> ChainError:
    lines = "\n".join(f"- {v.rule_message}" for v in violations)
    return ChainError(
        code=RunErrorCode.AI_RUN_ERROR,
        message=f"There are rule violations:\n{lines}",
        details={
            "violations": [
                {"rule": v.rule.value, "message": v.rule_message} for v in violations
            ]
        },
    )


def _build_model(
    request: GenerationRequest,
    config: GenerationConfig,
    custom_language_model: LanguageModel | None,
) -> LanguageModel:
    if custom_language_model is not None:
        return custom_language_model
    factory = resolve_provider(request.provider)
    return factory(
        config.model,
        cache_control=config.cache_control,
        **config.to_dict(exclude=_FACTORY_EXCLUDED),
    )


async def invoke(
    request: GenerationRequest,
    *,
    custom_language_model: LanguageModel | None = None,
    backend: StreamingBackend | None = None,
) -> Result[InvocationResult, ChainError]:
    """Run one normalized request.

    Returns as soon as the stream is set up; the provider call itself starts
    when the caller first reads ``full_stream`` or awaits an eventual field.
    """
    try:
        applied = apply_all_rules(
            provider=request.provider.provider,
            messages=request.messages,
            config=request.config,
        )
        if applied.violations:
            logger.debug(
                "Rejected %s request: %d rule violations",
                applied.label,
                len(applied.violations),
            )
            return Failure(_violation_error(applied.violations))

        config = applied.config
        model = _build_model(request, config, custom_language_model)

        built = build_tools(config.tools)
        if isinstance(built, Failure):
            return built

        streaming = backend if backend is not None else _default_backend
        options: dict[str, Any] = {
            "model": model,
            "messages": applied.messages,
            "prompt": request.prompt,
            "tools": built.value,
            "abort_signal": request.abort_signal,
            "provider_options": config.provider_options,
            "telemetry": request.telemetry or TelemetrySettings(enabled=True),
            "settings": replace(config, schema=None),
        }

        if request.is_object_mode:
            logger.debug(
                "Dispatching object stream (%s) to %s/%s",
                request.output,
                model.provider,
                model.model_id,
            )
            stream = streaming.stream_object(
                **options, schema=request.schema, output=request.output
            )
            return Success(
                ObjectResult(
                    full_stream=stream.full_stream,
                    object=stream.object,
                    usage=stream.usage,
                    provider_metadata=stream.provider_metadata,
                    finish_reason=stream.finish_reason,
                    provider_name=request.provider.provider,
                )
            )

        logger.debug("Dispatching text stream to %s/%s", model.provider, model.model_id)
        stream = streaming.stream_text(**options, transform=smooth_stream())
        return Success(
            TextResult(
                full_stream=stream.full_stream,
                text=stream.text,
                reasoning=stream.reasoning,
                usage=stream.usage,
                tool_calls=stream.tool_calls,
                provider_metadata=stream.provider_metadata,
                finish_reason=stream.finish_reason,
                provider_name=request.provider.provider,
            )
        )
    except Exception as exc:
        error = translate_error(exc)
        logger.debug("Invocation failed with %s: %s", error.code.value, error.message)
        return Failure(error)


async def ai(
    *,
    provider: ProviderDescriptor | dict[str, Any],
    config: GenerationConfig | dict[str, Any],
    messages: Sequence[Message | dict[str, Any]] | None = None,
    prompt: str | None = None,
    schema: SchemaInput | None = None,
    output: ObjectOutput | None = None,
    custom_language_model: LanguageModel | None = None,
    backend: StreamingBackend | None = None,
    abort_signal: AbortSignal | None = None,
    telemetry: TelemetrySettings | None = None,
) -> Result[InvocationResult, ChainError]:
    """Invoke a language model and stream the result.

    Args:
        provider: Provider identity and credentials.
        config: Model id and provider-agnostic generation options.
        messages: Conversation turns (Message objects or plain dicts).
        prompt: A single user prompt; mutually exclusive with ``messages``.
        schema: JSON-Schema dict or Pydantic model for object output.
        output: ``"object"``, ``"array"`` or ``"no-schema"``; selects object mode.
        custom_language_model: Model handle to use instead of resolving one.
        backend: Streaming backend; defaults to `DefaultStreamingBackend`.
        abort_signal: Cancels the stream when aborted.
        telemetry: Telemetry settings; enabled by default.

    Returns:
        ``Success(TextResult | ObjectResult)`` or ``Failure(ChainError)``.

    Example:
        result = await ai(
            provider=ProviderDescriptor(provider="openai", api_key="sk-..."),
            config=GenerationConfig(model="gpt-4o-mini"),
            prompt="Say hello",
        )
        match result:
            case Success(value=TextResult() as res):
                print(await res.text)
            case Failure(error=err):
                print(err.code, err.message)
    """
    try:
        request = normalize_request(
            provider=provider,
            config=config,
            messages=messages,
            prompt=prompt,
            schema=schema,
            output=output,
            abort_signal=abort_signal,
            telemetry=telemetry,
        )
    except Exception as exc:
        return Failure(translate_error(exc))
    return await invoke(
        request, custom_language_model=custom_language_model, backend=backend
    )
