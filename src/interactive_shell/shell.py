"""Interactive shell session.

A Shell launches one shell command as soon as it is created and lets the
caller drive it while it runs:

- on_data(): observe stdout and stderr chunks, replying to each one
  (write to stdin on stdout, kill with an error on stderr)
- on_done(): be told exactly once how the process ended
- log(): forward the child's output to the parent's own stdout/stderr

Usage:
    def handle(err, out, reply):
        if out and "Continue?" in out:
            reply("y\\n")
        elif err and "FATAL" in err:
            reply(RuntimeError(err))

    Shell("installer --interactive").on_data(handle).on_done(
        lambda error, code: print(error or f"exit {code}")
    )
"""

from __future__ import annotations

import codecs
import logging
import sys
from collections.abc import Callable
from typing import Any

from .config import get_config
from .errors import InvalidArgumentError
from .runtime.child_process import ChildProcess, spawn
from .runtime.streams import BroadcastStream, parent_sink
from .validation import is_fn, is_full_str, is_obj

__all__ = [
    "DataCallback",
    "DoneCallback",
    "KillReply",
    "Shell",
    "WriteReply",
]

logger = logging.getLogger(__name__)


class WriteReply:
    """Reply handed with a stdout chunk: writes a value to the child's stdin.

    Calling it with None or an empty value does nothing.
    """

    __slots__ = ("_child",)

    def __init__(self, child: ChildProcess) -> None:
        self._child = child

    def __call__(self, data: str | bytes | None = None) -> None:
        if data:
            self._child.stdin.write(data)


class KillReply:
    """Reply handed with a stderr chunk: kills the child with an error.

    Calling it with an exception terminates the process and raises the
    "error" event with that exact exception. Any other value is ignored.
    """

    __slots__ = ("_child",)

    def __init__(self, child: ChildProcess) -> None:
        self._child = child

    def __call__(self, error: BaseException | None = None) -> None:
        if isinstance(error, BaseException):
            logger.debug(f"Kill requested by observer: {error!r}")
            self._child.kill()
            self._child.emit("error", error)


# (err_chunk, out_chunk, reply): exactly one of the chunks is set
DataCallback = Callable[[str | None, str | None, KillReply | WriteReply], Any]
# (error, exit_code): exactly one of them is set
DoneCallback = Callable[[BaseException | None, int | None], Any]


class Shell:
    """One shell command running as a child process.

    The command starts when the Shell is created; there is no separate start
    step and a Shell is never reused for another process. Must be created
    while an event loop is running.

    Attributes:
        cmd: The command line
        child: Handle of the running child process
        encoding: Codec used to decode chunks
    """

    def __init__(self, cmd: str, opts: dict[str, Any] | None = None) -> None:
        """Validate arguments and launch cmd through the shell.

        Args:
            cmd: Non-blank shell command line
            opts: Spawn options forwarded to the launcher; shell mode is
                always forced on. The mapping itself is not modified.

        Raises:
            InvalidArgumentError: If cmd is not a non-blank str or opts is
                not a dict
        """
        if not is_full_str(cmd):
            raise InvalidArgumentError("cmd must be str")
        if opts is not None and not is_obj(opts):
            raise InvalidArgumentError("opts must be obj")

        self.cmd = cmd
        self.encoding = get_config().encoding
        self.child = spawn(cmd, {**(opts or {}), "shell": True})

    def on_output(self, callback: Callable[[str, WriteReply], Any]) -> Shell:
        """Observe stdout chunks as callback(chunk, write)."""
        if not is_fn(callback):
            raise InvalidArgumentError("on_output cb must be fn")
        self._subscribe(self.child.stdout, lambda chunk: callback(chunk, WriteReply(self.child)))
        return self

    def on_error_output(self, callback: Callable[[str, KillReply], Any]) -> Shell:
        """Observe stderr chunks as callback(chunk, kill)."""
        if not is_fn(callback):
            raise InvalidArgumentError("on_error_output cb must be fn")
        self._subscribe(self.child.stderr, lambda chunk: callback(chunk, KillReply(self.child)))
        return self

    def on_data(self, callback: DataCallback) -> Shell:
        """Observe both output streams through a single callback.

        stderr chunks arrive as callback(chunk, None, kill) and stdout chunks
        as callback(None, chunk, write). Chunks are delivered as read, with
        no line splitting and no ordering between the two streams. Calling
        this twice adds a second, independent subscription.
        """
        if not is_fn(callback):
            raise InvalidArgumentError("on_data cb must be fn")
        self.on_error_output(lambda chunk, kill: callback(chunk, None, kill))
        self.on_output(lambda chunk, write: callback(None, chunk, write))
        return self

    def on_done(self, callback: DoneCallback) -> Shell:
        """Be notified once when the process ends.

        The first of "error", "close" and "exit" wins: an error arrives as
        callback(error, None), a close or exit as callback(None, exit_code).
        Later signals are ignored.
        """
        if not is_fn(callback):
            raise InvalidArgumentError("on_done cb must be fn")
        fired = False

        def on_error(error: BaseException) -> None:
            nonlocal fired
            if fired:
                return
            fired = True
            callback(error, None)

        def on_finish(code: int) -> None:
            nonlocal fired
            if fired:
                return
            fired = True
            callback(None, code)

        self.child.on("error", on_error)
        self.child.on("close", on_finish)
        self.child.on("exit", on_finish)
        return self

    def log(self) -> Shell:
        """Forward the child's stdout and stderr to the parent's own streams."""
        self.child.stdout.pipe(parent_sink(sys.stdout, self.encoding))
        self.child.stderr.pipe(parent_sink(sys.stderr, self.encoding))
        return self

    def _subscribe(self, stream: BroadcastStream, deliver: Callable[[str], Any]) -> None:
        """Decode stream chunks for deliver, flushing the decoder at EOF."""
        # One decoder per subscription keeps split multi-byte characters intact
        decoder = codecs.getincrementaldecoder(self.encoding)(errors="replace")

        def on_chunk(data: bytes) -> None:
            chunk = decoder.decode(data)
            if chunk:
                deliver(chunk)

        def on_end() -> None:
            tail = decoder.decode(b"", final=True)
            if tail:
                deliver(tail)

        stream.on_data(on_chunk)
        stream.on_end(on_end)

    def __repr__(self) -> str:
        return f"Shell(cmd={self.cmd!r}, pid={getattr(self.child, 'pid', None)})"
