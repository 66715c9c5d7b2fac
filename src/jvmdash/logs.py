"""Logging setup for jvmdash.

The TUI owns the terminal, so log output goes to a file.
"""

import logging
from pathlib import Path

import structlog


def configure_logging(level: str = "INFO", log_file: str | Path | None = "jvmdash.log") -> None:
    """
    Route structlog through the standard logging module.

    Args:
        level: Minimum level name, e.g. "DEBUG" or "INFO".
        log_file: Destination file. None logs to stderr (CLI subcommands).
    """
    handler: logging.Handler
    if log_file is None:
        handler = logging.StreamHandler()
    else:
        handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
        existing.close()
    root.addHandler(handler)
    root.setLevel(level.upper())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
