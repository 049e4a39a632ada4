"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import shlex
import sys
from pathlib import Path
from typing import Any
from unittest import mock

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from interactive_shell.config import reload_config  # noqa: E402
from interactive_shell.runtime.child_process import LifecycleEvents  # noqa: E402
from interactive_shell.runtime.streams import BroadcastStream  # noqa: E402

# Helper scripts run as child processes
FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"


def script_cmd(name: str) -> str:
    """Shell command running a fixture script with this interpreter."""
    return f"{shlex.quote(sys.executable)} {shlex.quote(str(FIXTURES_DIR / name))}"


class FakeChild(LifecycleEvents):
    """Stand-in child process: streams are pushed to by hand."""

    def __init__(self, cmd: str = "", options: dict[str, Any] | None = None) -> None:
        super().__init__()
        self.cmd = cmd
        self.options = options
        self.stdout = BroadcastStream("stdout")
        self.stderr = BroadcastStream("stderr")
        self.stdin = mock.Mock()
        self.kill = mock.Mock()
        self.pid = 4242


class DoneRecorder:
    """on_done callback that records every call and resolves a future."""

    def __init__(self) -> None:
        self.calls: list[tuple[BaseException | None, int | None]] = []
        self._future: asyncio.Future[tuple[BaseException | None, int | None]] | None = None

    def __call__(self, error: BaseException | None, code: int | None) -> None:
        self.calls.append((error, code))
        if self._future is not None and not self._future.done():
            self._future.set_result((error, code))

    async def wait(self, timeout: float = 10.0) -> tuple[BaseException | None, int | None]:
        if self.calls:
            return self.calls[0]
        self._future = asyncio.get_running_loop().create_future()
        return await asyncio.wait_for(self._future, timeout)


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch: pytest.MonkeyPatch):
    """Isolate tests from ISHELL_* variables of the surrounding environment."""
    for name in (
        "ISHELL_TERM_TIMEOUT",
        "ISHELL_KILL_TIMEOUT",
        "ISHELL_READ_SIZE",
        "ISHELL_ENCODING",
        "ISHELL_LOG_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)
    # Short termination timeouts keep kill tests fast
    monkeypatch.setenv("ISHELL_TERM_TIMEOUT", "0.5")
    monkeypatch.setenv("ISHELL_KILL_TIMEOUT", "0.3")
    yield reload_config()
    monkeypatch.undo()
    reload_config()


@pytest.fixture
def fake_child():
    """Patch the launcher used by Shell with a FakeChild factory."""
    children: list[FakeChild] = []

    def fake_spawn(cmd: str, options: dict[str, Any] | None = None) -> FakeChild:
        child = FakeChild(cmd, options)
        children.append(child)
        return child

    with mock.patch("interactive_shell.shell.spawn", side_effect=fake_spawn) as patched:
        patched.children = children
        yield patched


@pytest.fixture
def done() -> DoneRecorder:
    return DoneRecorder()
