"""Environment-driven configuration for interactive-shell.

Environment variables:
    ISHELL_TERM_TIMEOUT: Seconds to wait after SIGTERM before SIGKILL
        - default 2.0, clamped to 0.1-60

    ISHELL_KILL_TIMEOUT: Seconds to wait after SIGKILL
        - default 1.0, clamped to 0.1-60

    ISHELL_READ_SIZE: Maximum bytes per pipe read (one chunk)
        - default 4096, clamped to 1-1048576

    ISHELL_ENCODING: Encoding for decoded chunks and str replies
        - default utf-8, unknown codecs fall back to the default

    ISHELL_LOG_DEBUG: Debug logging mode
        - true/1/yes = on (log to a temp file)
        - false/0/no = off (default, log to stderr)
"""

from __future__ import annotations

import codecs
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["ShellConfig", "load_config", "get_config", "reload_config"]

DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0
DEFAULT_READ_SIZE = 4096
DEFAULT_ENCODING = "utf-8"


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_timeout(value: str | None, default: float) -> float:
    """Parse a timeout in seconds."""
    if not value:
        return default
    try:
        timeout = float(value)
    except ValueError:
        return default
    return max(0.1, min(timeout, 60.0))


def _parse_read_size(value: str | None) -> int:
    if not value:
        return DEFAULT_READ_SIZE
    try:
        size = int(value)
    except ValueError:
        return DEFAULT_READ_SIZE
    return max(1, min(size, 1024 * 1024))


def _parse_encoding(value: str | None) -> str:
    if not value or not value.strip():
        return DEFAULT_ENCODING
    try:
        return codecs.lookup(value.strip()).name
    except LookupError:
        return DEFAULT_ENCODING


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the system temp dir."""
    log_dir = Path(tempfile.gettempdir()) / "interactive-shell"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"ishell_debug_{timestamp}.log"

    return str(log_file.resolve())


@dataclass
class ShellConfig:
    """Runtime settings shared by every session.

    Attributes:
        term_timeout: Seconds between SIGTERM and SIGKILL when killing
        kill_timeout: Seconds to wait for exit after SIGKILL
        read_size: Maximum bytes read from a pipe per chunk
        encoding: Codec for decoded chunks and str replies
        log_debug: Debug logging to a file instead of stderr
        log_file: Log file path (set when log_debug is on)
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    read_size: int = DEFAULT_READ_SIZE
    encoding: str = DEFAULT_ENCODING
    log_debug: bool = False
    log_file: str | None = None


def load_config() -> ShellConfig:
    """Load configuration from the environment."""
    log_debug = _parse_bool(os.environ.get("ISHELL_LOG_DEBUG"), default=False)

    return ShellConfig(
        term_timeout=_parse_timeout(
            os.environ.get("ISHELL_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT
        ),
        kill_timeout=_parse_timeout(
            os.environ.get("ISHELL_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT
        ),
        read_size=_parse_read_size(os.environ.get("ISHELL_READ_SIZE")),
        encoding=_parse_encoding(os.environ.get("ISHELL_ENCODING")),
        log_debug=log_debug,
        log_file=_generate_log_file_path() if log_debug else None,
    )


# Global instance (lazy)
_config: ShellConfig | None = None


def get_config() -> ShellConfig:
    """Return the cached global configuration."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> ShellConfig:
    """Re-read configuration from the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config
