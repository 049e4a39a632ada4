"""Runtime module for launching and driving shell child processes.

This module provides the child process handle used by sessions: broadcast
stdout/stderr streams, a non-blocking stdin, group termination and
lifecycle events.
"""

from __future__ import annotations

from .child_process import ChildProcess, LifecycleEvents, build_spawn_options, spawn
from .streams import BroadcastStream, InputStream, parent_sink

__all__ = [
    "BroadcastStream",
    "ChildProcess",
    "InputStream",
    "LifecycleEvents",
    "build_spawn_options",
    "parent_sink",
    "spawn",
]
