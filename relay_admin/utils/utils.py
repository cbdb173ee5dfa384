"""Misc cross-cutting helpers."""

from __future__ import annotations

import os
import time
from typing import Any


def now_ts() -> int:
    """Current unix time in whole seconds (the unit Nostr and JWT use)."""
    return int(time.time())


def get_env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def split_csv(value: str | None) -> list[str]:
    """Split a comma-separated env value, dropping blanks."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def first_tag_value(tags: list[list[Any]], name: str) -> str | None:
    """Return the first value of the tag called ``name`` or ``None``.

    >>> first_tag_value([["u", "https://x"], ["method", "POST"]], "method")
    'POST'
    """
    for tag in tags or []:
        if isinstance(tag, (list, tuple)) and len(tag) >= 2 and tag[0] == name:
            return str(tag[1])
    return None
