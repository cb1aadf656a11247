"""Console logging for Hoarfrost.

All modules log through the ``hoarfrost`` logger. The console handler writes
through click so output can be coloured and captured by click's test runner.

Levels:
- error: written to stderr, with the traceback in verbose mode.
- warning / verbose / debug: written to stdout, prefixed with the level name.
- info: written to stdout as-is.
"""

from __future__ import annotations

import logging
import traceback

import click

VERBOSE = 15
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("hoarfrost")

_LEVEL_COLOURS = {
    "warning": "yellow",
    "verbose": "bright_black",
    "debug": "bright_black",
}


def verbose(message: str, *args) -> None:
    """Log a message at the VERBOSE level."""
    logger.log(VERBOSE, message, *args)


class ConsoleHandler(logging.Handler):
    """Logging handler that formats records for a terminal.

    Attributes:
        show_tracebacks: Whether error records include their traceback.
    """

    def __init__(self, level: int = logging.INFO, show_tracebacks: bool = False):
        super().__init__(level)
        self.show_tracebacks = show_tracebacks

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
            if record.levelno >= logging.ERROR:
                click.echo(f"\n {click.style('error', fg='red')} {message}", err=True)
                if self.show_tracebacks and record.exc_info:
                    click.echo("".join(traceback.format_exception(*record.exc_info)), err=True)
                else:
                    click.echo("", err=True)
                return
            name = record.levelname.lower()
            if name != "info":
                message = f"{click.style(name, fg=_LEVEL_COLOURS.get(name, 'white'))} {message}"
            click.echo(f"  {message}")
        except Exception:  # pragma: no cover - mirrors logging.Handler.emit
            self.handleError(record)


def configure_logging(verbose: bool = False, quiet: bool = False) -> logging.Logger:
    """Attach the console handler to the ``hoarfrost`` logger.

    Calling this again replaces the previously attached console handler.

    Args:
        verbose: Show VERBOSE messages and error tracebacks.
        quiet: Only show errors.

    Returns:
        The configured logger.
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = VERBOSE
    else:
        level = logging.INFO
    for handler in list(logger.handlers):
        if isinstance(handler, ConsoleHandler):
            logger.removeHandler(handler)
    logger.addHandler(ConsoleHandler(level, show_tracebacks=verbose))
    logger.setLevel(level)
    logger.propagate = False
    return logger
