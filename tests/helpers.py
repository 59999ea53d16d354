"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off model or backend classes as coverage expands.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from switchyard.providers.models import Finish, TextDelta, Usage
from switchyard.streaming import DefaultStreamingBackend

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchyard.providers.models import ModelCall, StreamChunk


def text_script(*pieces: str, usage: Usage | None = None) -> list[StreamChunk]:
    """Text deltas for *pieces* followed by a ``stop`` finish chunk."""
    return [
        *(TextDelta(p) for p in pieces),
        Finish(
            finish_reason="stop",
            usage=usage or Usage(input_tokens=3, output_tokens=2, total_tokens=5),
        ),
    ]


@dataclass
class FakeLanguageModel:
    """LanguageModel double that replays a scripted chunk sequence.

    Script items that are exceptions are raised at that point in the stream.
    When ``gate`` is set, the stream waits on it after the first chunk, which
    lets tests hold a stream open mid-flight.
    """

    script: list[StreamChunk | BaseException] = field(default_factory=list)
    provider: str = "fake"
    model_id: str = "fake-model"
    gate: asyncio.Event | None = None
    calls: list[ModelCall] = field(default_factory=list)
    closed: bool = False

    async def stream(self, call: ModelCall) -> AsyncIterator[StreamChunk]:
        self.calls.append(call)
        try:
            for index, item in enumerate(self.script):
                if index == 1 and self.gate is not None:
                    await self.gate.wait()
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self.closed = True


@dataclass
class RecordingBackend(DefaultStreamingBackend):
    """Default backend that records every entry-point call."""

    calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def stream_text(self, **options: Any) -> Any:
        self.calls.append(("stream_text", options))
        return super().stream_text(**options)

    def stream_object(self, **options: Any) -> Any:
        self.calls.append(("stream_object", options))
        return super().stream_object(**options)


async def collect(stream: Any) -> list[StreamChunk]:
    """Drain an async iterable into a list."""
    return [chunk async for chunk in stream]
