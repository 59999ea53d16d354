"""Error translation: any failure → `ChainError` with a closed set of codes.

Classification is an ordered list of small classifier functions. Each either
recognizes an exception and returns a `RunErrorCode`, or returns ``None`` to
defer. Extend the boundary with `register_classifier` instead of editing the
built-in ones.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from switchyard._http import CONFIG_STATUS_CODES, RETRYABLE_STATUS_CODES
from switchyard.errors import (
    APIError,
    ChainError,
    ConfigurationError,
    ObjectGenerationError,
    RequestError,
    RunErrorCode,
    StreamAbortedError,
    SwitchyardError,
    ToolBuildError,
)
from switchyard.providers._errors import extract_status_code, is_transport_error

if TYPE_CHECKING:
    from collections.abc import Callable

    Classifier = Callable[[BaseException], RunErrorCode | None]

logger = logging.getLogger(__name__)

_MAX_SUMMARY_CHARS = 300


def _classify_library_error(exc: BaseException) -> RunErrorCode | None:
    if isinstance(exc, ConfigurationError):
        return RunErrorCode.AI_PROVIDER_CONFIG_ERROR
    if isinstance(
        exc, (RequestError, ToolBuildError, ObjectGenerationError, StreamAbortedError)
    ):
        return RunErrorCode.AI_RUN_ERROR
    return None


def _classify_status_code(exc: BaseException) -> RunErrorCode | None:
    status = extract_status_code(exc)
    if status is None:
        return None
    if status in CONFIG_STATUS_CODES:
        return RunErrorCode.AI_PROVIDER_CONFIG_ERROR
    if status >= 400:
        return RunErrorCode.AI_RUN_ERROR
    return None


def _classify_provider_error(exc: BaseException) -> RunErrorCode | None:
    if isinstance(exc, APIError) or is_transport_error(exc):
        return RunErrorCode.AI_RUN_ERROR
    return None


_CLASSIFIERS: list[Classifier] = [
    _classify_library_error,
    _classify_status_code,
    _classify_provider_error,
]


def register_classifier(classifier: Classifier) -> None:
    """Add *classifier* ahead of the built-in ones."""
    _CLASSIFIERS.insert(0, classifier)


def unregister_classifier(classifier: Classifier) -> None:
    if classifier in _CLASSIFIERS:
        _CLASSIFIERS.remove(classifier)


def classify(exc: BaseException) -> RunErrorCode:
    """Return the error code for *exc*; `UNKNOWN` when nothing recognizes it."""
    for classifier in _CLASSIFIERS:
        code = classifier(exc)
        if code is not None:
            return code
    return RunErrorCode.UNKNOWN


def _summarize(exc: BaseException) -> str:
    """One bounded, human-readable line describing *exc*."""
    text = str(exc).strip()
    first_line = text.splitlines()[0] if text else type(exc).__name__
    if len(first_line) > _MAX_SUMMARY_CHARS:
        first_line = first_line[: _MAX_SUMMARY_CHARS - 3] + "..."
    return first_line


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, APIError) and exc.retryable is not None:
        return exc.retryable
    status = extract_status_code(exc)
    if status is not None:
        return status in RETRYABLE_STATUS_CODES
    return is_transport_error(exc)


def translate_error(exc: BaseException) -> ChainError:
    """Translate any exception into a `ChainError`.

    The original exception is attached as ``cause``; it is not part of the
    message contract.
    """
    if isinstance(exc, ChainError):
        return exc

    code = classify(exc)
    summary = _summarize(exc)
    if code is RunErrorCode.UNKNOWN:
        summary = f"Unknown error: {summary}"

    details: dict[str, object] = {"error_type": type(exc).__name__}
    status = extract_status_code(exc)
    if status is not None:
        details["status_code"] = status
    if isinstance(exc, APIError):
        if exc.provider is not None:
            details["provider"] = exc.provider
        if exc.phase is not None:
            details["phase"] = exc.phase
        if exc.retry_after_s is not None:
            details["retry_after_s"] = exc.retry_after_s

    logger.debug("Translated %s into %s", type(exc).__name__, code.value)
    return ChainError(
        code=code,
        message=summary,
        details=details,
        hint=exc.hint if isinstance(exc, SwitchyardError) else None,
        retryable=code is RunErrorCode.AI_RUN_ERROR and _is_retryable(exc),
        cause=exc,
    )
