"""structlog wiring for the command line and HTTP entry points."""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO, cast

import structlog


def configure_logging(
    log_level: int | str = logging.INFO,
    json_format: bool = False,
    *,
    stream: TextIO | None = None,
) -> structlog.stdlib.BoundLogger:
    """Route structlog events through the standard library root logger.

    Library modules only call :func:`structlog.get_logger`; nothing is
    configured until an entry point calls this function.

    Args:
        log_level: Minimum level, either a number or a name such as ``"DEBUG"``.
        json_format: Render one JSON object per line instead of the console
            format.
        stream: Destination for log lines. Defaults to ``sys.stderr`` so
            command output on stdout stays machine readable.
    """

    level = _resolve_level(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates when reconfigured
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    processors: list[Any] = [
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
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    return cast("structlog.stdlib.BoundLogger", structlog.get_logger("scenecheckpoints"))


def _resolve_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(value.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level '{value}'.")
    return resolved


__all__ = ["configure_logging"]
