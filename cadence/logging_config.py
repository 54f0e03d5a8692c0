"""
Logging setup for Cadence entry points.

Library modules only ever call ``structlog.get_logger(__name__)``.  Whatever
process embeds Cadence calls ``configure_logging()`` once before creating
loggers so output is consistent and reply text never lands in logs verbatim.
"""

from __future__ import annotations

import logging

import structlog

# Fields that may carry user or model text.
_SENSITIVE_KEYS = frozenset({"text", "prompt", "content", "message"})
_MAX_DISPLAY_LEN = 80

_logging_configured = False


def _truncate_sensitive_fields(logger, method_name, event_dict):
    """Structlog processor that truncates text-bearing fields."""
    for key in _SENSITIVE_KEYS:
        val = event_dict.get(key)
        if isinstance(val, str) and len(val) > _MAX_DISPLAY_LEN:
            event_dict[key] = val[:_MAX_DISPLAY_LEN] + "... [truncated]"
    return event_dict


def configure_logging(level: int = logging.WARNING, *, colors: bool = True) -> None:
    """Configure structlog and standard-library logging.

    Safe to call more than once; subsequent calls are no-ops.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    logging.basicConfig(format="%(message)s", level=level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            _truncate_sensitive_fields,
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
