"""Command-line runner for interactive-shell.

Runs one command through a Shell with its output forwarded to this
process, optionally answering prompts and killing it on matching stderr.

Usage:
    python -m interactive_shell "ssh-keygen -t ed25519" --answer "" --answer ""
    python -m interactive_shell "make deploy" --kill-on "(?i)fatal"

Environment variables:
    ISHELL_LOG_DEBUG: log to a temp file at DEBUG level (default stderr/INFO)
    See interactive_shell.config for the rest.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import re
import sys
from collections.abc import Sequence

from .config import get_config
from .errors import ShellError
from .shell import KillReply, Shell, WriteReply

__all__ = ["main", "run"]

logger = logging.getLogger(__name__)


def exit_status(error: BaseException | None, code: int | None) -> int:
    """Map a completion outcome to a process exit status."""
    if error is not None or code is None:
        return 1
    if code < 0:
        # Killed by signal -code
        return 128 - code
    return code


async def run(
    cmd: str,
    answers: Sequence[str] = (),
    kill_on: str | None = None,
) -> int:
    """Run cmd with logging enabled and return its exit status.

    Args:
        cmd: Shell command line
        answers: Lines written to stdin, one per stdout chunk, in order
        kill_on: Regex; a stderr chunk matching it kills the command

    Returns:
        The command's exit code, 128+N when killed by signal N, or 1 when
        it ended with an error
    """
    loop = asyncio.get_running_loop()
    done: asyncio.Future[tuple[BaseException | None, int | None]] = loop.create_future()
    pending = list(answers)
    pattern = re.compile(kill_on) if kill_on else None

    def on_output(chunk: str, write: WriteReply) -> None:
        if pending:
            write(pending.pop(0) + "\n")

    def on_error_output(chunk: str, kill: KillReply) -> None:
        if pattern is not None and pattern.search(chunk):
            kill(ShellError(f"stderr matched {pattern.pattern!r}: {chunk.strip()}"))

    def on_done(error: BaseException | None, code: int | None) -> None:
        if not done.done():
            done.set_result((error, code))

    shell = (
        Shell(cmd)
        .log()
        .on_output(on_output)
        .on_error_output(on_error_output)
        .on_done(on_done)
    )
    error, code = await done
    # Reap the child (and finish a pending kill) before returning
    await shell.child.wait()

    if error is not None:
        logger.debug(f"Command failed cmd={cmd!r}: {error!r}")
        print(f"interactive-shell: {error}", file=sys.stderr)
    return exit_status(error, code)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="interactive-shell",
        description="Run a shell command, answer its prompts and forward its output",
    )
    parser.add_argument("cmd", help="Shell command line to run")
    parser.add_argument(
        "--answer",
        action="append",
        default=[],
        metavar="TEXT",
        help="Line written to stdin on the next stdout chunk (repeatable)",
    )
    parser.add_argument(
        "--kill-on",
        metavar="PATTERN",
        default=None,
        help="Kill the command when a stderr chunk matches this regex",
    )
    return parser


def configure_logging() -> None:
    """Configure handlers from the environment."""
    config = get_config()
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # LOG_DEBUG mode: temp file
        log_handlers.append(logging.FileHandler(config.log_file, encoding="utf-8"))
        log_level = logging.DEBUG
    else:
        log_handlers.append(logging.StreamHandler(sys.stderr))
        log_level = logging.INFO

    for handler in log_handlers:
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )

    # Third-party loggers stay at WARNING
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("interactive_shell").setLevel(log_level)


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    configure_logging()

    if args.kill_on is not None:
        try:
            re.compile(args.kill_on)
        except re.error as e:
            build_parser().error(f"invalid --kill-on pattern: {e}")

    try:
        status = asyncio.run(run(args.cmd, args.answer, args.kill_on))
    except ShellError as e:
        print(f"interactive-shell: {e}", file=sys.stderr)
        status = 2
    sys.exit(status)


if __name__ == "__main__":
    main()
