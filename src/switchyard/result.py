"""Result values for operations that report failure without raising.

The rule engine, tool builder and orchestrator return these instead of
raising, so failures are a predictable part of the data flow. A successful
invocation carries a `TextResult` or an `ObjectResult`, tagged by ``type``.
"""

from __future__ import annotations

import dataclasses
import typing

if typing.TYPE_CHECKING:
    from switchyard.providers.models import ToolCall, Usage
    from switchyard.streaming import Eventual, ReplayStream

TSuccess = typing.TypeVar("TSuccess")
TFailure = typing.TypeVar("TFailure", bound=Exception)


@dataclasses.dataclass(frozen=True, slots=True)
class Success(typing.Generic[TSuccess]):
    """A successful result."""

    value: TSuccess

    @property
    def ok(self) -> bool:
        return True


@dataclasses.dataclass(frozen=True, slots=True)
class Failure(typing.Generic[TFailure]):
    """A failed result, containing the error."""

    error: TFailure

    @property
    def ok(self) -> bool:
        return False


Result = Success[TSuccess] | Failure[TFailure]


@dataclasses.dataclass(frozen=True)
class TextResult:
    """Free-text invocation.

    ``full_stream`` and every eventual field share one provider call; the
    call starts on first consumption of either.
    """

    full_stream: ReplayStream
    text: Eventual[str]
    reasoning: Eventual[str | None]
    usage: Eventual[Usage]
    tool_calls: Eventual[list[ToolCall]]
    provider_metadata: Eventual[dict[str, typing.Any]]
    finish_reason: Eventual[str]
    provider_name: str
    type: typing.Literal["text"] = "text"


@dataclasses.dataclass(frozen=True)
class ObjectResult:
    """Structured-object invocation."""

    full_stream: ReplayStream
    object: Eventual[typing.Any]
    usage: Eventual[Usage]
    provider_metadata: Eventual[dict[str, typing.Any]]
    finish_reason: Eventual[str]
    provider_name: str
    type: typing.Literal["object"] = "object"


InvocationResult = TextResult | ObjectResult
