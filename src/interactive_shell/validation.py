"""Argument guards used by the session API."""

from __future__ import annotations

from typing import Any

__all__ = ["is_full_str", "is_obj", "is_fn"]


def is_full_str(value: Any) -> bool:
    """True for a str with at least one non-whitespace character."""
    return isinstance(value, str) and bool(value.strip())


def is_obj(value: Any) -> bool:
    """True for a plain key-value mapping (a dict)."""
    return isinstance(value, dict)


def is_fn(value: Any) -> bool:
    return callable(value)
