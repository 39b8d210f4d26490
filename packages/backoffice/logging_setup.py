"""Logging configuration shared by every ``backoffice`` entrypoint.

Entrypoints (the CLI, a host web app) call :func:`configure_logging` once at
startup; it installs one ``StreamHandler`` on the ``"backoffice"`` logger.
Library modules only ever do ``get_logger("backoffice.<module>")`` and never
attach handlers themselves. Until an entrypoint configures logging, records
are swallowed by a ``NullHandler``.

The level defaults to ``$BACKOFFICE_LOG_LEVEL`` (a level name such as
``DEBUG`` or a number) and otherwise ``INFO``.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

ROOT_LOGGER_NAME = "backoffice"
LEVEL_ENV_VAR = "BACKOFFICE_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_configured_handler: logging.Handler | None = None


def resolve_level(level: int | str | None = None) -> int:
    """Turn ``level`` (or the environment override) into a numeric level."""

    if level is None:
        level = os.getenv(LEVEL_ENV_VAR) or logging.INFO
    if isinstance(level, int):
        return level
    text = level.strip().upper()
    if text.isdigit():
        return int(text)
    numeric = logging.getLevelName(text)
    # getLevelName returns "Level X" for unknown names.
    return numeric if isinstance(numeric, int) else logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
    force: bool = False,
) -> logging.Logger:
    """Attach the package handler; repeated calls are no-ops unless ``force``.

    Parameters
    ----------
    level:
        ``int`` level or level name. ``None`` reads ``$BACKOFFICE_LOG_LEVEL``.
    fmt:
        Format string; defaults to :data:`DEFAULT_FORMAT`.
    stream:
        Destination of the single ``StreamHandler`` (``sys.stderr``).
    force:
        Replace a previously installed handler (used by tests).
    """

    global _configured_handler
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    if _configured_handler is not None:
        if not force:
            return logger
        logger.removeHandler(_configured_handler)
        _configured_handler = None

    for existing in list(logger.handlers):
        if isinstance(existing, logging.NullHandler):
            logger.removeHandler(existing)

    numeric = resolve_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(numeric)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(numeric)
    logger.propagate = False
    _configured_handler = handler
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return ``logging.getLogger(name)`` with a silent default for libraries."""

    root = logging.getLogger(ROOT_LOGGER_NAME)
    if _configured_handler is None and not root.handlers:
        root.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "resolve_level"]
