"""Lenient parsing of incomplete JSON text from object streams."""

from __future__ import annotations

from typing import Any

from pydantic_core import from_json


def parse_partial_json(text: str) -> Any | None:
    """Parse *text*, closing open strings and containers when it is incomplete.

    Returns ``None`` when the text is empty or is not a JSON prefix.
    """
    text = text.strip()
    if not text:
        return None
    try:
        return from_json(text, allow_partial="trailing-strings")
    except ValueError:
        return None
