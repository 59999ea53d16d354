"""Default streaming backend: one provider call fanned out to many readers.

A backend call returns immediately. The provider call starts on the first
read of ``full_stream`` or the first await of an eventual value, runs as a
single task, and feeds both a replay buffer (so ``full_stream`` can be
iterated, even more than once) and one-shot futures (the eventual values).
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
import json
import logging
import time
from typing import TYPE_CHECKING, Any, Generic, Literal, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from switchyard._json import parse_partial_json
from switchyard.errors import ObjectGenerationError, RequestError, StreamAbortedError
from switchyard.messages import Message
from switchyard.providers.models import (
    Finish,
    ModelCall,
    ObjectDelta,
    ReasoningDelta,
    ResponseFormat,
    StreamAbort,
    StreamChunk,
    StreamError,
    TextDelta,
    ToolCall,
    Usage,
)
from switchyard.telemetry import report_call
from switchyard.translate import translate_error

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Generator, Iterable, Sequence

    from switchyard.abort import AbortSignal
    from switchyard.config import GenerationConfig
    from switchyard.providers.base import LanguageModel
    from switchyard.smoothing import StreamTransform
    from switchyard.telemetry import TelemetrySettings
    from switchyard.tools import Tool

logger = logging.getLogger(__name__)

ObjectOutput = Literal["object", "array", "no-schema"]
SchemaInput = type[BaseModel] | dict[str, Any]

T = TypeVar("T")


def consume_future_exception(fut: asyncio.Future[Any]) -> None:
    """Avoid 'Future exception was never retrieved' for unread eventual values."""
    try:
        _ = fut.exception()
    except asyncio.CancelledError:
        return


class Eventual(Generic[T]):
    """An awaitable value settled once the underlying stream ends.

    Awaiting starts the stream if nobody has started it yet.
    """

    __slots__ = ("_future", "_start")

    def __init__(self, future: asyncio.Future[T], start: Callable[[], None]) -> None:
        self._future = future
        self._start = start

    def __await__(self) -> Generator[Any, None, T]:
        self._start()
        return self._future.__await__()

    def done(self) -> bool:
        return self._future.done()


class ReplayStream:
    """Async-iterable view over the chunks of one stream, from the beginning."""

    __slots__ = ("_pump",)

    def __init__(self, pump: _StreamPump) -> None:
        self._pump = pump

    def __aiter__(self) -> AsyncIterator[StreamChunk]:
        return self._pump.iterate()


async def _as_async_generator(
    source: AsyncIterator[StreamChunk],
) -> AsyncIterator[StreamChunk]:
    try:
        async for chunk in source:
            yield chunk
    finally:
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()


# =============================================================================
# Collectors: derive eventual values from the chunk sequence
# =============================================================================


class _Collector:
    def __init__(self) -> None:
        self._loop = asyncio.get_running_loop()
        self.usage_future: asyncio.Future[Usage] = self._future()
        self.metadata_future: asyncio.Future[dict[str, Any]] = self._future()
        self.finish_reason_future: asyncio.Future[str] = self._future()
        self.usage = Usage()
        self.provider_metadata: dict[str, Any] = {}
        self.finish_reason = "unknown"

    def _future(self) -> asyncio.Future[Any]:
        fut = self._loop.create_future()
        fut.add_done_callback(consume_future_exception)
        return fut

    def _futures(self) -> list[asyncio.Future[Any]]:
        return [self.usage_future, self.metadata_future, self.finish_reason_future]

    def process(self, chunk: StreamChunk) -> Iterable[StreamChunk]:
        if isinstance(chunk, Finish):
            self.usage = chunk.usage
            self.provider_metadata = chunk.provider_metadata
            self.finish_reason = chunk.finish_reason
        return (chunk,)

    def complete(self) -> None:
        _settle(self.usage_future, self.usage)
        _settle(self.metadata_future, self.provider_metadata)
        _settle(self.finish_reason_future, self.finish_reason)

    def fail(self, error: Exception) -> None:
        for fut in self._futures():
            if not fut.done():
                fut.set_exception(error)


def _settle(fut: asyncio.Future[Any], value: Any) -> None:
    if not fut.done():
        fut.set_result(value)


class _TextCollector(_Collector):
    def __init__(self) -> None:
        super().__init__()
        self.text_future: asyncio.Future[str] = self._future()
        self.reasoning_future: asyncio.Future[str | None] = self._future()
        self.tool_calls_future: asyncio.Future[list[ToolCall]] = self._future()
        self._text: list[str] = []
        self._reasoning: list[str] = []
        self._tool_calls: list[ToolCall] = []

    def _futures(self) -> list[asyncio.Future[Any]]:
        return [
            *super()._futures(),
            self.text_future,
            self.reasoning_future,
            self.tool_calls_future,
        ]

    def process(self, chunk: StreamChunk) -> Iterable[StreamChunk]:
        if isinstance(chunk, TextDelta):
            self._text.append(chunk.text)
        elif isinstance(chunk, ReasoningDelta):
            self._reasoning.append(chunk.text)
        elif isinstance(chunk, ToolCall):
            self._tool_calls.append(chunk)
        return super().process(chunk)

    def complete(self) -> None:
        _settle(self.text_future, "".join(self._text))
        _settle(self.reasoning_future, "".join(self._reasoning) or None)
        _settle(self.tool_calls_future, list(self._tool_calls))
        super().complete()


class _ObjectCollector(_Collector):
    def __init__(self, *, output: ObjectOutput, schema_model: type[BaseModel] | None) -> None:
        super().__init__()
        self.object_future: asyncio.Future[Any] = self._future()
        self._output = output
        self._schema_model = schema_model
        self._text: list[str] = []
        self._last_partial: Any = None
        self._raw: Any = None
        self._final: Any = None
        self._finalized = False

    def _futures(self) -> list[asyncio.Future[Any]]:
        return [*super()._futures(), self.object_future]

    def _select(self, value: Any) -> Any:
        if self._output == "array":
            return value.get("elements") if isinstance(value, dict) else None
        return value

    def process(self, chunk: StreamChunk) -> Iterable[StreamChunk]:
        out: list[StreamChunk] = []
        if isinstance(chunk, TextDelta):
            self._text.append(chunk.text)
            out.append(chunk)
            partial = self._select(parse_partial_json("".join(self._text)))
            if partial is not None and partial != self._last_partial:
                self._last_partial = partial
                out.append(ObjectDelta(partial))
            return out
        if isinstance(chunk, Finish):
            self._finalize()
            if self._raw != self._last_partial:
                self._last_partial = self._raw
                out.append(ObjectDelta(self._raw))
        out.extend(super().process(chunk))
        return out

    def _finalize(self) -> Any:
        if self._finalized:
            return self._final
        text = "".join(self._text)
        try:
            parsed = json.loads(text)
        except ValueError as e:
            raise ObjectGenerationError(
                "No object generated: the response did not parse as JSON",
                hint="Check the schema and the model's structured-output support.",
                text=text,
            ) from e

        value = self._select(parsed)
        if self._output == "object" and not isinstance(value, dict):
            raise ObjectGenerationError(
                "No object generated: expected a JSON object", text=text
            )
        if self._output == "array" and not isinstance(value, list):
            raise ObjectGenerationError(
                "No object generated: expected an 'elements' array", text=text
            )

        self._raw = value

        if self._schema_model is not None and self._output != "no-schema":
            try:
                if self._output == "array":
                    value = [self._schema_model.model_validate(v) for v in value]
                else:
                    value = self._schema_model.model_validate(value)
            except ValidationError as e:
                raise ObjectGenerationError(
                    f"No object generated: response did not match schema "
                    f"({e.error_count()} validation errors)",
                    text=text,
                ) from e

        self._final = value
        self._finalized = True
        return value

    def complete(self) -> None:
        _settle(self.object_future, self._finalize())
        super().complete()


# =============================================================================
# Pump: the single task behind every reader
# =============================================================================


class _StreamPump:
    def __init__(
        self,
        *,
        source: Callable[[], AsyncIterator[StreamChunk]],
        collector: _Collector,
        abort_signal: AbortSignal | None,
        on_complete: Callable[[float], None] | None = None,
    ) -> None:
        self._source = source
        self._collector = collector
        self._signal = abort_signal
        self._on_complete = on_complete
        self._chunks: list[StreamChunk] = []
        self._closed = False
        self._updated = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._remove_listener: Callable[[], None] | None = None
        if abort_signal is not None:
            self._remove_listener = abort_signal.add_listener(self._on_abort)

    def start(self) -> None:
        if self._task is not None or self._closed:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def iterate(self) -> AsyncIterator[StreamChunk]:
        self.start()
        index = 0
        while True:
            if index < len(self._chunks):
                yield self._chunks[index]
                index += 1
            elif self._closed:
                return
            else:
                await self._updated.wait()

    def _push(self, chunk: StreamChunk) -> None:
        self._chunks.append(chunk)
        updated, self._updated = self._updated, asyncio.Event()
        updated.set()

    def _close(self) -> None:
        self._closed = True
        self._updated.set()
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None

    def _on_abort(self, reason: Any) -> None:
        if self._closed:
            return
        if self._task is not None:
            self._task.cancel()
        if not self._running:
            # Not started yet: settle here, the cancelled task never runs.
            self._abort(reason)
            self._close()

    def _abort(self, reason: Any) -> None:
        logger.debug("Stream aborted: %s", reason)
        self._push(StreamAbort(reason))
        self._collector.fail(StreamAbortedError(reason=reason))

    async def _run(self) -> None:
        if self._closed:
            return
        self._running = True
        started = time.monotonic()
        try:
            async with aclosing(self._source()) as chunks:
                async for chunk in chunks:
                    if isinstance(chunk, StreamError):
                        raise chunk.error
                    for out in self._collector.process(chunk):
                        self._push(out)
            self._collector.complete()
        except asyncio.CancelledError:
            if self._signal is not None and self._signal.aborted:
                self._abort(self._signal.reason)
                return
            self._abort("cancelled")
            raise
        except Exception as exc:
            error = translate_error(exc)
            logger.debug("Stream failed: %s", error.message)
            self._push(StreamError(error))
            self._collector.fail(error)
        else:
            duration = time.monotonic() - started
            logger.debug("Stream finished in %.3fs", duration)
            if self._on_complete is not None:
                self._on_complete(duration)
        finally:
            self._close()


# =============================================================================
# Backend results
# =============================================================================


class TextStream:
    """Free-text stream handle returned by `stream_text`."""

    def __init__(self, pump: _StreamPump, collector: _TextCollector) -> None:
        start = pump.start
        self.full_stream = ReplayStream(pump)
        self.text: Eventual[str] = Eventual(collector.text_future, start)
        self.reasoning: Eventual[str | None] = Eventual(collector.reasoning_future, start)
        self.tool_calls: Eventual[list[ToolCall]] = Eventual(
            collector.tool_calls_future, start
        )
        self.usage: Eventual[Usage] = Eventual(collector.usage_future, start)
        self.provider_metadata: Eventual[dict[str, Any]] = Eventual(
            collector.metadata_future, start
        )
        self.finish_reason: Eventual[str] = Eventual(collector.finish_reason_future, start)


class ObjectStream:
    """Structured-object stream handle returned by `stream_object`."""

    def __init__(self, pump: _StreamPump, collector: _ObjectCollector) -> None:
        start = pump.start
        self.full_stream = ReplayStream(pump)
        self.object: Eventual[Any] = Eventual(collector.object_future, start)
        self.usage: Eventual[Usage] = Eventual(collector.usage_future, start)
        self.provider_metadata: Eventual[dict[str, Any]] = Eventual(
            collector.metadata_future, start
        )
        self.finish_reason: Eventual[str] = Eventual(collector.finish_reason_future, start)


class StreamingBackend(Protocol):
    """The two entry points the orchestrator calls into.

    Both return immediately; the provider call happens while the caller
    consumes the result.
    """

    def stream_text(
        self,
        *,
        model: LanguageModel,
        messages: Sequence[Message],
        prompt: str | None,
        tools: dict[str, Tool],
        abort_signal: AbortSignal | None,
        provider_options: dict[str, Any] | None,
        telemetry: TelemetrySettings | None,
        settings: GenerationConfig | None,
        transform: StreamTransform | None = None,
    ) -> Any: ...

    def stream_object(
        self,
        *,
        model: LanguageModel,
        messages: Sequence[Message],
        prompt: str | None,
        tools: dict[str, Tool],
        abort_signal: AbortSignal | None,
        provider_options: dict[str, Any] | None,
        telemetry: TelemetrySettings | None,
        settings: GenerationConfig | None,
        schema: SchemaInput,
        output: ObjectOutput,
    ) -> Any: ...


# =============================================================================
# Default backend
# =============================================================================


def _resolve_schema(schema: SchemaInput) -> tuple[dict[str, Any], type[BaseModel] | None]:
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return schema.model_json_schema(), schema
    if isinstance(schema, dict):
        return schema, None
    raise RequestError(
        "schema must be a Pydantic model class or JSON schema dict",
        hint="Pass a BaseModel subclass or a dict following JSON Schema.",
    )


def object_response_format(schema: SchemaInput, output: ObjectOutput) -> ResponseFormat:
    """Return the provider-facing JSON constraint for an object stream."""
    if output == "no-schema":
        return ResponseFormat(schema=None)
    json_schema, _ = _resolve_schema(schema)
    if output == "array":
        return ResponseFormat(
            schema={
                "type": "object",
                "properties": {"elements": {"type": "array", "items": json_schema}},
                "required": ["elements"],
                "additionalProperties": False,
            }
        )
    if output == "object":
        return ResponseFormat(schema=json_schema)
    raise RequestError(
        f"Unknown output mode: {output!r}",
        hint="Use 'object', 'array' or 'no-schema'.",
    )


def build_model_call(
    *,
    messages: Sequence[Message],
    prompt: str | None,
    tools: dict[str, Tool] | None,
    settings: GenerationConfig | None,
    provider_options: dict[str, Any] | None,
    response_format: ResponseFormat | None = None,
) -> ModelCall:
    """Standardize prompt/messages and settings into a `ModelCall`."""
    if prompt is not None and messages:
        raise RequestError(
            "Pass either prompt or messages, not both",
            hint="Fold the prompt into the message list as a user message.",
        )
    turns = (Message(role="user", content=prompt),) if prompt is not None else tuple(messages)
    knobs: dict[str, Any] = {}
    if settings is not None:
        knobs = settings.to_dict(
            exclude=("model", "tools", "provider_options", "cache_control", "schema")
        )
    return ModelCall(
        messages=turns,
        tools=dict(tools or {}),
        response_format=response_format,
        provider_options=provider_options,
        **knobs,
    )


class DefaultStreamingBackend:
    """Streams through `LanguageModel.stream` with a single pump task per call."""

    def _pump(
        self,
        *,
        model: LanguageModel,
        call: ModelCall,
        collector: _Collector,
        abort_signal: AbortSignal | None,
        telemetry: TelemetrySettings | None,
        transform: StreamTransform | None,
        scope: str,
    ) -> _StreamPump:
        def source() -> AsyncIterator[StreamChunk]:
            logger.debug("Dispatching %s to %s/%s", scope, model.provider, model.model_id)
            chunks = _as_async_generator(model.stream(call))
            return transform(chunks) if transform is not None else chunks

        def on_complete(duration: float) -> None:
            usage = collector.usage
            report_call(
                telemetry,
                scope,
                duration=duration,
                metrics={
                    "input_tokens": usage.input_tokens,
                    "output_tokens": usage.output_tokens,
                    "total_tokens": usage.total_tokens,
                },
                provider=model.provider,
                model=model.model_id,
            )

        return _StreamPump(
            source=source,
            collector=collector,
            abort_signal=abort_signal,
            on_complete=on_complete,
        )

    def stream_text(
        self,
        *,
        model: LanguageModel,
        messages: Sequence[Message] = (),
        prompt: str | None = None,
        tools: dict[str, Tool] | None = None,
        abort_signal: AbortSignal | None = None,
        provider_options: dict[str, Any] | None = None,
        telemetry: TelemetrySettings | None = None,
        settings: GenerationConfig | None = None,
        transform: StreamTransform | None = None,
    ) -> TextStream:
        call = build_model_call(
            messages=messages,
            prompt=prompt,
            tools=tools,
            settings=settings,
            provider_options=provider_options,
        )
        collector = _TextCollector()
        pump = self._pump(
            model=model,
            call=call,
            collector=collector,
            abort_signal=abort_signal,
            telemetry=telemetry,
            transform=transform,
            scope="switchyard.stream_text",
        )
        return TextStream(pump, collector)

    def stream_object(
        self,
        *,
        model: LanguageModel,
        schema: SchemaInput,
        output: ObjectOutput,
        messages: Sequence[Message] = (),
        prompt: str | None = None,
        tools: dict[str, Tool] | None = None,
        abort_signal: AbortSignal | None = None,
        provider_options: dict[str, Any] | None = None,
        telemetry: TelemetrySettings | None = None,
        settings: GenerationConfig | None = None,
    ) -> ObjectStream:
        if tools:
            # JSON-constrained output and tool calling do not mix reliably.
            logger.debug("Ignoring %d tools for object stream", len(tools))
        call = build_model_call(
            messages=messages,
            prompt=prompt,
            tools=None,
            settings=settings,
            provider_options=provider_options,
            response_format=object_response_format(schema, output),
        )
        _, schema_model = (
            _resolve_schema(schema) if output != "no-schema" else (None, None)
        )
        collector = _ObjectCollector(output=output, schema_model=schema_model)
        pump = self._pump(
            model=model,
            call=call,
            collector=collector,
            abort_signal=abort_signal,
            telemetry=telemetry,
            transform=None,
            scope="switchyard.stream_object",
        )
        return ObjectStream(pump, collector)
