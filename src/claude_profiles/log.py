"""
Logging context -- one object, passed everywhere.

Sinks are resolved once at startup: a Rich console for the human
at the terminal and an optional log file with timestamps and levels.
Components never touch global print state; they receive a LogContext
and call info/warn/error/debug on it. Background saves in watch mode
get a derived context whose console output is muted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape

LOGGER_NAME = "claude_profiles"
TRACE = 5

logging.addLevelName(TRACE, "TRACE")

_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def default_log_path() -> Path:
    """Build the default log file name for ``--log`` without a value."""
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d-%H-%M-%S")
    return Path(f"claude-profiles-{timestamp}.txt.log")


@dataclass
class LogContext:
    """Explicit logging sink threaded through every engine call.

    Attributes:
        console: Rich console for user-facing output.
        logger: Logger that feeds the optional file sink.
        verbose: Show debug and trace output on the console.
        interactive: Show info/success output on the console.
        log_file: Path of the file sink, if one is configured.
    """

    console: Console = field(default_factory=Console)
    logger: logging.Logger = field(
        default_factory=lambda: logging.getLogger(LOGGER_NAME)
    )
    verbose: bool = False
    interactive: bool = True
    log_file: Optional[Path] = None

    def background(self) -> "LogContext":
        """Derive a context for unattended saves.

        Info output is kept out of the console unless verbose;
        warnings and errors still reach both sinks.
        """
        return replace(self, interactive=self.verbose)

    def info(self, message: str) -> None:
        self.logger.info(message)
        if self.interactive:
            self.console.print(escape(message))

    def success(self, message: str) -> None:
        self.logger.info(message)
        if self.interactive:
            self.console.print(f"[green]{escape(message)}[/]")

    def warn(self, message: str) -> None:
        self.logger.warning(message)
        self.console.print(f"[yellow]{escape(message)}[/]")

    def error(self, message: str) -> None:
        self.logger.error(message)
        self.console.print(f"[red]{escape(message)}[/]")

    def debug(self, message: str) -> None:
        self.logger.debug(message)
        if self.verbose:
            self.console.print(f"[dim]\\[DEBUG] {escape(message)}[/]")

    def trace(self, message: str) -> None:
        self.logger.log(TRACE, message)
        if self.verbose:
            self.console.print(f"[dim]\\[TRACE] {escape(message)}[/]")


def setup_logging(
    verbose: bool = False,
    log_file: Optional[Path] = None,
    console: Optional[Console] = None,
) -> LogContext:
    """Configure sinks once and return the context to pass around.

    Args:
        verbose: Enable debug/trace console output.
        log_file: Write a detailed log here when given.
        console: Console to print to. Defaults to a fresh stdout console.

    Returns:
        LogContext bound to the configured sinks.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(TRACE if verbose else logging.DEBUG)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    ctx = LogContext(
        console=console or Console(),
        logger=logger,
        verbose=verbose,
    )

    if log_file is not None:
        try:
            header = (
                f"Claude Profiles Log - Started at "
                f"{datetime.now(timezone.utc).isoformat()}\n{'=' * 60}\n\n"
            )
            log_file.write_text(header, encoding="utf-8")
            handler = logging.FileHandler(log_file, encoding="utf-8")
            handler.setFormatter(logging.Formatter(_FILE_FORMAT))
            logger.addHandler(handler)
            ctx.log_file = log_file
            ctx.info(f"Logging initialized to file: {log_file}")
        except OSError as exc:
            ctx.warn(f"Could not create log file: {exc}")
    else:
        logger.addHandler(logging.NullHandler())

    return ctx
