"""Structured diagnostics on stderr using structlog.

Standard output carries only the messages meant for the user (the local
and public URLs), so every log record goes to stderr or to a file.
"""

import logging
import sys
from typing import TextIO

import structlog
from structlog.typing import Processor

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _is_tty(stream: TextIO) -> bool:
    try:
        return stream.isatty()
    except (AttributeError, ValueError):
        return False


def setup_logging(
    level: str = "WARNING",
    json_format: bool = False,
    log_file: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Route stdlib logging and structlog to the diagnostics stream.

    Args:
        level: One of DEBUG, INFO, WARNING, ERROR, CRITICAL (any case)
        json_format: Render one JSON object per record
        log_file: Also append records to this file
        stream: Diagnostics stream, defaults to sys.stderr

    Raises:
        ValueError: If the level name is unknown
    """
    level_name = level.upper()
    if level_name not in LOG_LEVELS:
        raise ValueError(
            f"Unknown log level '{level}'. Use one of: {', '.join(LOG_LEVELS)}"
        )
    log_level = getattr(logging, level_name)
    stream = stream or sys.stderr

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(log_level)

    stream_handler = logging.StreamHandler(stream)
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(stream_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        root_logger.addHandler(file_handler)

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=_is_tty(stream)))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Logger bound to ``name``, usually the calling module's ``__name__``."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
