"""Exceptions raised by interactive-shell."""

from __future__ import annotations

__all__ = [
    "ShellError",
    "InvalidArgumentError",
]


class ShellError(Exception):
    """Base exception for interactive-shell."""
    pass


class InvalidArgumentError(ShellError, ValueError):
    """A constructor or registration argument was malformed.

    Raised synchronously, before any process side effect.
    """
    pass
