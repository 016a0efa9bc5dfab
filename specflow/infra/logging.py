"""structlog setup for specflow.

Call setup_logging() once before any log calls; open_runtime() does this.
Log lines go to stderr so command output on stdout stays clean.

spec_log_context() binds the subject spec to every line emitted while a
lifecycle operation runs, including lines from event handlers and the issue
sync service it calls into.
"""

from __future__ import annotations

import logging
import sys
from contextlib import AbstractContextManager

import structlog


def setup_logging(*, json_output: bool = True, log_level: str = "INFO") -> None:
    """Configure structlog.

    Args:
        json_output: JSON lines if True, console rendering otherwise.
        log_level: Minimum level name; unknown names fall back to INFO.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(),
    ]

    level = logging.getLevelNamesMapping().get(log_level.upper(), logging.INFO)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def spec_log_context(spec_id: str, **extra: object) -> AbstractContextManager[None]:
    """Bind spec_id (and any extra keys) to log lines emitted inside the block."""
    return structlog.contextvars.bound_contextvars(spec_id=spec_id, **extra)
