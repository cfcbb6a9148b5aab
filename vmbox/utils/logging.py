"""Logging for vmbox.

Every record goes to a rotating log file. Interactive runs also echo
info and above to a Rich console on stderr, so stdout stays clean for
`vmbox plan`. Under a supervisor (`--daemon`) the console is replaced by a
plain stderr handler that journald can timestamp.

Usage:
    from vmbox.utils.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Pulling ulexus/qemu:latest")
    logger.error("Extraction failed", exc=exception)

Environment Variables:
    VMBOX_DEBUG=1          Echo debug records to the console
    VMBOX_LOG_LEVEL=DEBUG  Threshold for the vmbox logger
    VMBOX_LOG_FILE=/path   Log file (default ~/.local/share/vmbox/logs/vmbox.log)
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape

from vmbox.paths import HostPaths

ROOT_LOGGER = "vmbox"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DAEMON_FORMAT = "%(name)s: %(levelname)s: %(message)s"

_configured = False
_debug_mode = False
_daemon_mode = False

console = Console(stderr=True)

SUCCESS_LEVEL = 25
logging.addLevelName(SUCCESS_LEVEL, "SUCCESS")


def log_file_path() -> Path:
    """Where the rotating log lives; VMBOX_LOG_FILE wins over the default."""
    override = os.environ.get("VMBOX_LOG_FILE")
    if override:
        return Path(override)
    return HostPaths.log_dir() / "vmbox.log"


def is_debug_mode() -> bool:
    return _debug_mode or os.environ.get("VMBOX_DEBUG", "").lower() in ("1", "true", "yes")


def _level() -> int:
    default = "DEBUG" if _debug_mode else "INFO"
    name = os.environ.get("VMBOX_LOG_LEVEL", default).upper()
    return getattr(logging, name, logging.INFO)


def _file_handler() -> Optional[logging.Handler]:
    path = log_file_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
        )
    except OSError:
        # Read-only home: run without a log file
        return None
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def configure_logging(debug: bool = False, daemon: bool = False, force: bool = False) -> None:
    """Install handlers on the vmbox logger.

    The first get_logger() call configures defaults; the CLI calls again
    with force=True once --debug/--daemon are known.
    """
    global _configured, _debug_mode, _daemon_mode

    if _configured and not force:
        return

    _debug_mode = debug or is_debug_mode()
    _daemon_mode = daemon
    level = _level()

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.handlers.clear()

    handler = _file_handler()
    if handler is not None:
        root.addHandler(handler)

    if _daemon_mode:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(level)
        stderr_handler.setFormatter(logging.Formatter(DAEMON_FORMAT))
        root.addHandler(stderr_handler)

    _configured = True
    root.debug(
        f"Logging to {log_file_path()} at {logging.getLevelName(level)} "
        f"(debug={_debug_mode}, daemon={_daemon_mode})"
    )


class VMBoxLogger:
    """Writes to the stdlib logger and echoes to the shared console.

    Debug echoes only in debug mode. Nothing echoes in daemon mode, where the
    stderr handler already prints each record.
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)
        self.console = console

    def _echo(self, markup: str, message: str) -> None:
        if not _daemon_mode:
            self.console.print(f"[{markup}]{escape(message)}[/{markup}]", highlight=False)

    def debug(self, message: str, console_output: bool = False) -> None:
        self.logger.debug(message)
        if console_output or is_debug_mode():
            self._echo("dim", f"[DEBUG] {message}")

    def info(self, message: str, console_output: bool = True) -> None:
        self.logger.info(message)
        if console_output:
            self._echo("blue", message)

    def success(self, message: str, console_output: bool = True) -> None:
        self.logger.log(SUCCESS_LEVEL, message)
        if console_output:
            self._echo("green", f"✓ {message}")

    def warning(self, message: str, console_output: bool = True) -> None:
        self.logger.warning(message)
        if console_output:
            self._echo("yellow", f"⚠ {message}")

    def error(
        self,
        message: str,
        exc: Optional[BaseException] = None,
        console_output: bool = True,
    ) -> None:
        """Log an error; with exc, the traceback goes to the log file."""
        if exc:
            message = f"{message}: {exc}"
            self.logger.error(message, exc_info=exc)
        else:
            self.logger.error(message)
        if console_output:
            self._echo("red", f"✗ {message}")


def get_logger(name: str) -> VMBoxLogger:
    """Return a VMBoxLogger under the vmbox namespace."""
    if not _configured:
        configure_logging()
    if not name.startswith(ROOT_LOGGER):
        name = f"{ROOT_LOGGER}.{name}"
    return VMBoxLogger(name)


def log_startup_info() -> None:
    """Record interpreter and environment details in the log file."""
    logger = get_logger("vmbox.startup")
    logger.debug(f"Python {sys.version.split()[0]} on {sys.platform}")
    for var in ("VMBOX_DEBUG", "VMBOX_LOG_LEVEL", "VMBOX_LOG_FILE"):
        value = os.environ.get(var)
        if value:
            logger.debug(f"{var}={value}")
