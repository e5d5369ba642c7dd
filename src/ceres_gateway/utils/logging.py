"""Structured logging for the gateway.

Key Responsibilities:
    - Route every ``structlog`` event of the gateway through the standard
      library so uvicorn, Sentry, and pytest see the same records
    - Render events as JSON lines with sensitive fields redacted
    - Carry the request correlation id in ``structlog`` context variables

Side Effects:
    - Installs one stdout handler on the root logger and reconfigures
      ``structlog`` globally
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable, Mapping
from contextvars import Token
from typing import Any

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

from ceres_gateway.config.settings import LoggingSettings

CORRELATION_KEY = "correlation_id"
REDACTED = "***"

# Marks the handler installed by configure_logging so reconfiguration replaces
# only that handler and leaves the ones owned by uvicorn or pytest in place.
_HANDLER_NAME = "ceres-gateway"


class RedactSensitiveFields:
    """Processor replacing the values of configured keys, at any depth, with ``***``."""

    def __init__(self, fields: Iterable[str]) -> None:
        self.fields = frozenset(field.lower() for field in fields)

    def _redact(self, value: Any) -> Any:
        if isinstance(value, Mapping):
            return {
                key: REDACTED if str(key).lower() in self.fields else self._redact(item)
                for key, item in value.items()
            }
        if isinstance(value, (list, tuple)):
            return [self._redact(item) for item in value]
        return value

    def __call__(self, _: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
        return self._redact(event_dict)


def _level_value(level: int | str) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO


def _install_handler(level: int) -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        if handler.get_name() == _HANDLER_NAME:
            root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(level)


def configure_logging(settings: LoggingSettings | None = None) -> None:
    """Configure ``structlog`` and the root logger from ``settings``."""
    settings = settings or LoggingSettings()
    level = _level_value(settings.level)
    _install_handler(level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        RedactSensitiveFields(settings.scrub_fields),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(sort_keys=True, default=str),
    ]
    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def bind_correlation_id(value: str) -> Mapping[str, Token[Any]]:
    """Bind ``value`` as the correlation id of the current context.

    Returns:
        Tokens restoring the previous binding through :func:`reset_correlation_id`.
    """
    return structlog.contextvars.bind_contextvars(**{CORRELATION_KEY: value})


def reset_correlation_id(tokens: Mapping[str, Token[Any]] | None) -> None:
    if tokens:
        structlog.contextvars.reset_contextvars(**tokens)


def get_correlation_id() -> str | None:
    return structlog.contextvars.get_contextvars().get(CORRELATION_KEY)


__all__ = [
    "CORRELATION_KEY",
    "RedactSensitiveFields",
    "bind_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "reset_correlation_id",
]
