"""
Logger configuration for repoharvest.

structlog is bridged onto the standard logging module so clone workers, the
collector and the CLI narrate progress through one set of handlers, either on
the console or in a log file.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import structlog
from structlog.stdlib import BoundLogger, ProcessorFormatter
from structlog.typing import Processor

_PRE_CHAIN: tuple[Processor, ...] = (
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
)


def _configure_structlog(min_level: int) -> None:
    structlog.configure(
        processors=[*_PRE_CHAIN, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _build_formatter() -> ProcessorFormatter:
    return ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(colors=False),
        foreign_pre_chain=_PRE_CHAIN,
    )


def configure_logging(
    level: int = logging.INFO,
    enable_console: bool = True,
    console_level: Optional[int] = None,
) -> None:
    """
    Configure global logging.

    Parameters
    ----------
    level:
        Base logging level for the root logger.
    enable_console:
        When False, nothing is written to stderr until a file is attached
        with :func:`redirect_logging_to_file`.
    console_level:
        Severity threshold for console output. Defaults to ``level``.
    """
    _configure_structlog(level)
    logging.captureWarnings(True)

    handlers: list[logging.Handler] = []
    if enable_console:
        handler = logging.StreamHandler()
        handler.setLevel(console_level if console_level is not None else level)
        handler.setFormatter(_build_formatter())
        handlers.append(handler)
    else:
        handlers.append(logging.NullHandler())

    logging.basicConfig(level=level, handlers=handlers, force=True)
    # GitPython logs every spawned git command at debug level.
    logging.getLogger("git").setLevel(max(level, logging.INFO))


def get_logger(name: Optional[str] = None) -> BoundLogger:
    """Retrieve a structlog logger with the provided name."""
    return structlog.get_logger(name)


def redirect_logging_to_file(path: Path, level: int = logging.INFO) -> None:
    """Send all log output to ``path`` instead of the console."""
    _configure_structlog(level)
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="w", encoding="utf-8")
    handler.setFormatter(_build_formatter())
    root.addHandler(handler)
    root.setLevel(level)
