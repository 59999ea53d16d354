"""Stream transform that evens out bursty provider chunking."""

from __future__ import annotations

import asyncio
from contextlib import aclosing
import re
from typing import TYPE_CHECKING, Literal

from switchyard.providers.models import ReasoningDelta, TextDelta

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from switchyard.providers.models import StreamChunk

    StreamTransform = Callable[[AsyncIterator[StreamChunk]], AsyncIterator[StreamChunk]]

_CHUNKING_PATTERNS: dict[str, re.Pattern[str]] = {
    "word": re.compile(r"\S+\s+"),
    "line": re.compile(r"[^\n]*\n"),
}


def smooth_stream(
    *,
    delay_s: float = 0.01,
    chunking: Literal["word", "line"] | re.Pattern[str] = "word",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> StreamTransform:
    """Return a transform that re-emits text in whole words (or lines).

    Text and reasoning deltas are buffered and released one match at a time,
    with *delay_s* between releases. Any other chunk flushes the buffer first,
    so ordering relative to tool calls and the finish chunk is preserved.
    """
    if isinstance(chunking, str):
        try:
            pattern = _CHUNKING_PATTERNS[chunking]
        except KeyError:
            raise ValueError(f"Unknown chunking mode: {chunking!r}") from None
    else:
        pattern = chunking

    async def transform(source: AsyncIterator[StreamChunk]) -> AsyncIterator[StreamChunk]:
        buffer = ""
        kind: type[TextDelta | ReasoningDelta] = TextDelta

        async with aclosing(source) as chunks:
            async for chunk in chunks:
                if not isinstance(chunk, (TextDelta, ReasoningDelta)):
                    if buffer:
                        yield kind(buffer)
                        buffer = ""
                    yield chunk
                    continue

                if type(chunk) is not kind and buffer:
                    yield kind(buffer)
                    buffer = ""
                kind = type(chunk)
                buffer += chunk.text

                while (match := pattern.search(buffer)) is not None and match.end() > 0:
                    piece, buffer = buffer[: match.end()], buffer[match.end() :]
                    yield kind(piece)
                    if delay_s > 0:
                        await sleep(delay_s)

        if buffer:
            yield kind(buffer)

    return transform
