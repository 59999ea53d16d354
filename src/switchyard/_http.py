"""Small HTTP-related constants shared across Switchyard.

This module is intentionally tiny to avoid circular imports and drift.
"""

from __future__ import annotations

# Retryable status codes shared by provider error mapping and translation.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

# Status codes that point at credentials, permissions or an unknown model.
CONFIG_STATUS_CODES: frozenset[int] = frozenset({401, 403, 404})
