"""interactive-shell: drive an interactive shell command from Python.

Launch a command as a child process, observe its stdout/stderr chunks as
they arrive, reply by writing to its stdin (or kill it with an error), and
be notified exactly once when it ends.
"""

from __future__ import annotations

from .config import ShellConfig, get_config, load_config, reload_config
from .errors import InvalidArgumentError, ShellError
from .runtime import ChildProcess, spawn
from .shell import KillReply, Shell, WriteReply

__version__ = "0.1.0"

__all__ = [
    "ChildProcess",
    "InvalidArgumentError",
    "KillReply",
    "Shell",
    "ShellConfig",
    "ShellError",
    "WriteReply",
    "get_config",
    "load_config",
    "reload_config",
    "spawn",
]
