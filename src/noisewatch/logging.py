"""Console notices with Rich formatting and structlog file configuration.

Console output is reserved for what a person at the terminal must see:
daemon started, excessive noise, fatal startup errors. Everything else goes
to the JSON Lines log file through structlog.
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from noisewatch.config import Config

_console = Console(highlight=False)
_err_console = Console(highlight=False, stderr=True)

# Timestamp format used for the start banner and shutdown message
BANNER_TIME_FORMAT = "%d/%m/%Y %H:%M:%S"


class Icon:
    """Icon vocabulary for console output."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    NOISE = "[bold yellow]🔊[/]"
    SIGNAL = "⚡"


_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    console = _err_console if level == "error" else _console
    console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


def sensing_started(when: datetime | None = None) -> None:
    """Print the start banner."""
    when = when or datetime.now()
    _console.print(f"Audio sensing started on {when.strftime(BANNER_TIME_FORMAT)}")


def monitor_started(pid: int) -> None:
    """Log background monitor spawned."""
    info(f"Monitor running in background [dim](PID {pid})[/]", Icon.OK)


def excessive_noise(amplitude: float, threshold: float) -> None:
    """Log threshold breach."""
    info(
        f"[bold]Excessive noise detected[/] [dim]({amplitude:.3f} > {threshold:.3f})[/]",
        Icon.NOISE,
    )


def fatal(msg: str) -> None:
    """Log a fatal startup error. ``msg`` is plain text, not markup."""
    error(escape(msg), Icon.FAIL)


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config, verbose: bool = False, source: str = "monitor") -> None:
    """Configure structlog to write JSON Lines to the rotating daemon log.

    Args:
        config: Application config with paths
        verbose: Log at DEBUG instead of INFO
        source: Value of the ``source`` field on every event
    """
    level = logging.DEBUG if verbose else logging.INFO

    config.log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source(source),
                structlog.processors.format_exc_info,
            ],
        )
    )

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(level)
    stdlib_root.handlers.clear()
    stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            _add_source(source),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
