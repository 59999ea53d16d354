"""Shared provider-side error helpers.

Adapters attach retry metadata via APIError so callers can decide on retries
deterministically, without brittle substring matching.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx

from switchyard._http import RETRYABLE_STATUS_CODES
from switchyard.errors import APIError, RateLimitError, _walk_exception_chain

_AUTH_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GEMINI_API_KEY",
    "google_vertex": "GOOGLE_APPLICATION_CREDENTIALS",
    "anthropic_vertex": "GOOGLE_APPLICATION_CREDENTIALS",
    "amazon_bedrock": "AWS_ACCESS_KEY_ID/AWS_SECRET_ACCESS_KEY",
}


def _as_status(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and 100 <= value <= 599:
        return value
    return None


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        candidates = [getattr(e, attr, None) for attr in ("status_code", "status", "code")]
        candidates.append(getattr(getattr(e, "response", None), "status_code", None))
        for value in candidates:
            status = _as_status(value)
            if status is not None:
                return status
    return None


# protobuf Duration, e.g. "8s" or "8.352104981s"
_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)s")


def _header_retry_after(exc: BaseException) -> float | None:
    headers: Any = getattr(getattr(exc, "response", None), "headers", None)
    if not hasattr(headers, "get"):
        return None
    try:
        seconds = float(headers.get("Retry-After"))
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


def _google_retry_delay(exc: BaseException) -> float | None:
    """Read ``retryDelay`` from a google-genai error body.

    ``ClientError.details`` holds the parsed JSON body::

        {"error": {"details": [{"@type": "...RetryInfo", "retryDelay": "8s"}]}}
    """
    body: Any = getattr(exc, "details", None)
    error = body.get("error") if isinstance(body, dict) else None
    entries = error.get("details") if isinstance(error, dict) else None
    for entry in entries if isinstance(entries, list) else ():
        if not isinstance(entry, dict) or "RetryInfo" not in str(entry.get("@type", "")):
            continue
        match = _DURATION_RE.fullmatch(str(entry.get("retryDelay", "")))
        if match:
            return float(match.group(1))
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0:
            return float(value)
        for probe in (_header_retry_after, _google_retry_delay):
            seconds = probe(e)
            if seconds is not None:
                return seconds
    return None


def is_transport_error(exc: BaseException) -> bool:
    """Return True when *exc* (or its chain) is a network/timeout failure."""
    for e in _walk_exception_chain(exc):
        if isinstance(e, (TimeoutError, httpx.TimeoutException, httpx.RequestError)):
            return True
    return False


def _auth_hint(provider: str, status_code: int | None) -> str | None:
    if status_code in {401, 403}:
        env_var = _AUTH_ENV_VARS.get(provider, "the provider API key")
        return f"Check credentials/permissions (try {env_var})."
    if status_code == 404:
        return "Check the model identifier and base_url."
    return None


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    message: str | None = None,
    hint: str | None = None,
) -> APIError:
    """Map provider SDK exceptions into APIError with stable retry metadata."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, APIError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        if hint is not None and exc.hint is None:
            exc.hint = hint
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)

    retryable = retry_after_s is not None or is_transport_error(exc)
    if isinstance(status_code, int) and status_code in RETRYABLE_STATUS_CODES:
        retryable = True

    msg = message or f"{provider} {phase} failed"
    err_cls: type[APIError] = RateLimitError if status_code == 429 else APIError

    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc)
    return err_cls(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=hint if hint is not None else _auth_hint(provider, status_code),
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
    )
