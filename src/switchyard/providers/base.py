"""Provider protocols: the minimal interface a model handle exposes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchyard.providers.models import ModelCall, StreamChunk


@runtime_checkable
class LanguageModel(Protocol):
    """A provider model handle capable of streaming generation.

    ``stream`` yields provider-neutral chunks and ends with a `Finish` chunk.
    SDK failures surface as `APIError` raised from the iterator.
    """

    provider: str
    model_id: str

    def stream(self, call: ModelCall) -> AsyncIterator[StreamChunk]:
        """Stream one generation."""
        ...


class AdapterFactory(Protocol):
    """Build a model handle for one model id."""

    def __call__(self, model_id: str, **options: Any) -> LanguageModel: ...
