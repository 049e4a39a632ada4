"""Child process handle with broadcast pipes and lifecycle events.

interactive-shell runtime module

This module provides:
- Eager, non-blocking launch of a shell command on the running event loop
- stdout/stderr pumps fanned out to any number of listeners
- Fire-and-forget stdin writes
- Reliable termination (SIGTERM -> timeout -> SIGKILL) of the process group
- "error" / "exit" / "close" lifecycle notifications

Key design points:
- POSIX: start_new_session=True so kill() reaches the shell's children
- Windows: CREATE_NEW_PROCESS_GROUP for CTRL_BREAK_EVENT delivery
- A launch failure emits "error" and nothing else
- "exit" fires when the process exits, even if a background grandchild
  still holds its pipes; "close" fires once both pipes were drained
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from collections.abc import Callable, Mapping
from typing import Any

import anyio

from ..config import ShellConfig, get_config
from .streams import BroadcastStream, InputStream

__all__ = [
    "ChildProcess",
    "EVENTS",
    "LifecycleEvents",
    "build_spawn_options",
    "spawn",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

EVENTS = ("error", "exit", "close")

# asyncio's default StreamReader buffer limit
DEFAULT_STREAM_LIMIT = 2**16


class _ExitNotifyingProtocol(asyncio.subprocess.SubprocessStreamProtocol):
    """Stream protocol that resolves `exited` as soon as the process exits.

    Process.wait() also waits for the pipes to close, which never happens
    while a backgrounded grandchild still holds them.
    """

    def __init__(self, limit: int, loop: asyncio.AbstractEventLoop) -> None:
        super().__init__(limit=limit, loop=loop)
        self.exited: asyncio.Future[None] = loop.create_future()

    def process_exited(self) -> None:
        super().process_exited()
        if not self.exited.done():
            self.exited.set_result(None)


def build_spawn_options(options: Mapping[str, Any] | None) -> dict[str, Any]:
    """Build kwargs for the subprocess launch.

    Caller keys are copied as-is; shell mode and piped stdio are forced, and
    process group isolation is defaulted so kill() can signal the group.

    Args:
        options: Caller spawn options (cwd, env, ...)

    Returns:
        New kwargs dict; the caller mapping is not modified
    """
    kwargs: dict[str, Any] = dict(options or {})

    kwargs["shell"] = True
    kwargs["stdin"] = asyncio.subprocess.PIPE
    kwargs["stdout"] = asyncio.subprocess.PIPE
    kwargs["stderr"] = asyncio.subprocess.PIPE

    if IS_WINDOWS:
        kwargs.setdefault("creationflags", subprocess.CREATE_NEW_PROCESS_GROUP)
    else:
        kwargs.setdefault("start_new_session", True)

    return kwargs


class LifecycleEvents:
    """Minimal listener registry for process lifecycle events."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Callable[..., Any]]] = {e: [] for e in EVENTS}

    def on(self, event: str, listener: Callable[..., Any]) -> LifecycleEvents:
        """Subscribe listener to event ("error", "exit" or "close")."""
        if event not in self._listeners:
            raise ValueError(f"Unknown event: {event!r}")
        self._listeners[event].append(listener)
        return self

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener of event with args.

        Returns:
            True if the event had listeners
        """
        listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                logger.exception(f"{event} listener failed")
        return bool(listeners)


class ChildProcess(LifecycleEvents):
    """Handle over one shell command running as a child process.

    Creating the handle schedules the launch on the running loop and returns
    at once; launch failures are reported through the "error" event.

    Example:
        child = spawn("my-cli --interactive", {"cwd": "/workspace"})
        child.stdout.on_data(lambda chunk: print(chunk))
        child.on("exit", lambda code: print("exit", code))
        child.stdin.write("yes\\n")
        await child.wait()

    Attributes:
        cmd: Shell command line
        options: Keyword arguments passed to the subprocess launch
        stdout: Broadcast stream of the child's stdout
        stderr: Broadcast stream of the child's stderr
        stdin: Non-blocking writer for the child's stdin
    """

    def __init__(
        self,
        cmd: str,
        options: Mapping[str, Any] | None = None,
        *,
        config: ShellConfig | None = None,
    ) -> None:
        super().__init__()
        config = config or get_config()

        self.cmd = cmd
        self.options = build_spawn_options(options)
        self.term_timeout = config.term_timeout
        self.kill_timeout = config.kill_timeout
        self.read_size = config.read_size
        self.encoding = config.encoding

        self.stdout = BroadcastStream("stdout")
        self.stderr = BroadcastStream("stderr")
        self.stdin = InputStream(self.encoding)

        self._process: asyncio.subprocess.Process | None = None
        self._kill_requested = False
        self._kill_task: asyncio.Task[None] | None = None
        self._exited: asyncio.Future[None] | None = None

        # Raises RuntimeError outside a running loop
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run())

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process is not None else None

    @property
    def killed(self) -> bool:
        """Whether kill() was requested."""
        return self._kill_requested

    def kill(self) -> None:
        """Request termination of the process group without blocking.

        Safe to call before the process started (it is terminated as soon as
        it launches) and more than once.
        """
        if self._kill_requested:
            return
        self._kill_requested = True
        if self._process is not None:
            self._start_termination(self._process)

    async def wait(self) -> int | None:
        """Wait until the child finished and every event was emitted.

        Returns:
            The return code, or None if the launch failed
        """
        await asyncio.wait({self._task})
        if self._kill_task is not None:
            await asyncio.wait({self._kill_task})
        return self.returncode

    async def _launch(self) -> asyncio.subprocess.Process:
        """create_subprocess_shell() with an exit-notifying protocol."""
        loop = asyncio.get_running_loop()
        kwargs = dict(self.options)
        limit = kwargs.pop("limit", DEFAULT_STREAM_LIMIT)
        transport, protocol = await loop.subprocess_shell(
            lambda: _ExitNotifyingProtocol(limit=limit, loop=loop),
            self.cmd,
            **kwargs,
        )
        self._exited = protocol.exited
        return asyncio.subprocess.Process(transport, protocol, loop)

    async def _wait_exit(self, process: asyncio.subprocess.Process) -> int | None:
        """Wait for the process itself to exit, regardless of its pipes."""
        if self._exited is not None:
            # Shielded so a timeout around this call leaves the future intact
            await asyncio.shield(self._exited)
        return process.returncode

    async def _run(self) -> None:
        try:
            process = await self._launch()
        except Exception as e:
            logger.debug(f"Failed to launch cmd={self.cmd!r}: {e!r}")
            self.stdin.close()
            self.emit("error", e)
            return

        self._process = process
        logger.debug(f"Started subprocess pid={process.pid} cmd={self.cmd!r}")

        self.stdin.attach(process.stdin)
        if self._kill_requested:
            self._start_termination(process)

        pumps = [
            asyncio.ensure_future(self.stdout.pump(process.stdout, self.read_size)),
            asyncio.ensure_future(self.stderr.pump(process.stderr, self.read_size)),
        ]
        try:
            returncode = await self._wait_exit(process)
            logger.debug(f"Subprocess exited pid={process.pid} returncode={returncode}")
            self.emit("exit", returncode)

            # Pipes stay open while any grandchild holds them; keep delivering
            await asyncio.gather(*pumps)
            await process.wait()
        except asyncio.CancelledError:
            await self._safe_cleanup(process)
            raise
        finally:
            for pump in pumps:
                if not pump.done():
                    pump.cancel()
            self.stdin.close()

        logger.debug(f"Subprocess pipes closed pid={process.pid}")
        self.emit("close", returncode)

    def _start_termination(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None or self._kill_task is not None:
            return
        self._kill_task = asyncio.ensure_future(self._terminate_process(process))

    async def _safe_cleanup(self, process: asyncio.subprocess.Process) -> None:
        """Terminate the process, shielded from cancellation."""
        if process.returncode is not None:
            return
        try:
            await asyncio.shield(self._terminate_process(process))
        except asyncio.CancelledError:
            # Shield itself was cancelled; still try to terminate
            await self._terminate_process(process)

    async def _terminate_process(self, process: asyncio.subprocess.Process) -> None:
        """Terminate the child gracefully, then forcefully if needed.

        Termination strategy:
        1. Send SIGTERM to the group (or CTRL_BREAK_EVENT on Windows)
        2. Wait up to term_timeout for exit
        3. If still running, send SIGKILL (or kill() on Windows)
        4. Wait up to kill_timeout for exit
        """
        pid = process.pid
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            if IS_WINDOWS:
                self._windows_terminate(process)
            else:
                self._posix_signal(process, signal.SIGTERM)

            with anyio.move_on_after(self.term_timeout):
                await self._wait_exit(process)
            if process.returncode is not None:
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={process.returncode}"
                )
                return

            logger.debug(f"Force killing subprocess pid={pid}")
            if IS_WINDOWS:
                process.kill()
            else:
                self._posix_signal(process, signal.SIGKILL)

            with anyio.move_on_after(self.kill_timeout):
                await self._wait_exit(process)
            if process.returncode is None:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")
            else:
                logger.debug(f"Subprocess killed pid={pid} returncode={process.returncode}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except Exception as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    def _posix_signal(self, process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
        """Send sig to the child's process group, or to the child alone."""
        if not self.options.get("start_new_session"):
            process.send_signal(sig)
            return
        try:
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, sig)
            logger.debug(f"Sent {sig.name} to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to send_signal: {e}")
            process.send_signal(sig)

    def _windows_terminate(self, process: asyncio.subprocess.Process) -> None:
        try:
            # Works because of CREATE_NEW_PROCESS_GROUP
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            process.terminate()


def spawn(cmd: str, options: Mapping[str, Any] | None = None) -> ChildProcess:
    """Launch cmd through the shell and return its handle.

    Must be called while an event loop is running.
    """
    return ChildProcess(cmd, options)
