"""Exception hierarchy and returned error values for Switchyard."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class SwitchyardError(Exception):
    """Base exception for all Switchyard errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(SwitchyardError):
    """Provider descriptor or generation config is invalid."""


class RequestError(SwitchyardError):
    """A generation request has an invalid shape (messages, prompt, schema)."""


class ToolBuildError(SwitchyardError):
    """A tool definition could not be converted into a callable tool."""


class ObjectGenerationError(SwitchyardError):
    """The model output could not be parsed or validated as the requested object."""

    def __init__(
        self, message: str, *, hint: str | None = None, text: str | None = None
    ) -> None:
        super().__init__(message, hint=hint)
        self.text = text


class StreamAbortedError(SwitchyardError):
    """The caller aborted a stream before it completed."""

    def __init__(
        self, message: str = "Stream aborted", *, reason: Any = None
    ) -> None:
        super().__init__(message)
        self.reason = reason


class APIError(SwitchyardError):
    """Provider call failed.

    Adapters attach retry metadata so callers can decide on retries without
    brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""


class RunErrorCode(StrEnum):
    """Closed set of error kinds returned by the orchestrator."""

    AI_PROVIDER_CONFIG_ERROR = "ai_provider_config_error"
    AI_RUN_ERROR = "ai_run_error"
    UNKNOWN = "unknown_error"


class ChainError(SwitchyardError):
    """Error value returned (not raised) by `ai()`.

    ``code`` is the only field callers should branch on. ``cause`` keeps the
    original exception for logging and diagnostics.
    """

    def __init__(
        self,
        *,
        code: RunErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        hint: str | None = None,
        retryable: bool = False,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.code = code
        self.message = message
        self.details = details or {}
        self.retryable = retryable
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __repr__(self) -> str:
        return f"ChainError(code={self.code.value!r}, message={self.message!r})"


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its explicit ``__cause__`` chain, with cycle protection.

    Implicit ``__context__`` links are not followed: an unrelated error raised
    while handling a provider failure must not inherit its status code.
    """
    seen: set[int] = set()
    cur: BaseException | None = exc
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        yield cur
        cur = cur.__cause__
