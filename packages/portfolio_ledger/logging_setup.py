"""Logging configuration for the ``portfolio_ledger`` package.

Two helpers make up the public surface:

- ``configure_logging(...)``: attach one ``StreamHandler`` to the package
  logger (``"portfolio_ledger"``). Entrypoints (the CLI, a host service) call
  it once at startup; later calls are no-ops.
- ``get_logger(name)``: return a child logger, installing a ``NullHandler`` on
  the package logger while nothing has been configured so library use stays
  silent.

The reconciliation core never logs through a module global. It accepts a
``logging.Logger`` argument and falls back to ``get_logger`` only when the
caller passes none.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

PACKAGE_LOGGER = "portfolio_ledger"
LOG_LEVEL_ENV = "PORTFOLIO_LEDGER_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_configured = False


def resolve_level(level: int | str | None = None) -> int:
    """Translate ``level`` (or the env override) into a numeric level.

    Accepts ints, numeric strings and standard level names. Unknown names fall
    back to ``INFO`` rather than failing startup.
    """

    if level is None:
        level = os.getenv(LOG_LEVEL_ENV)
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        name = level.strip().upper()
        if name.isdigit():
            return int(name)
        numeric = logging.getLevelName(name)
        if isinstance(numeric, int):
            return numeric
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Configure the package logger exactly once and return it.

    Parameters
    ----------
    level:
        ``int`` or level name. ``None`` reads ``PORTFOLIO_LEDGER_LOG_LEVEL``
        and defaults to ``INFO``.
    fmt:
        Optional format string; defaults to :data:`DEFAULT_FORMAT`.
    stream:
        Destination for the handler; ``sys.stderr`` when omitted.
    """

    global _configured
    logger = logging.getLogger(PACKAGE_LOGGER)
    if _configured:
        return logger

    for handler in list(logger.handlers):
        if isinstance(handler, logging.NullHandler):
            logger.removeHandler(handler)

    numeric = resolve_level(level)
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(numeric)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))

    logger.setLevel(numeric)
    logger.addHandler(handler)
    # The package handler is the only sink; keep records off the root logger.
    logger.propagate = False

    _configured = True
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return ``logging.getLogger(name)`` with a library-safe default handler."""

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if not _configured and not package_logger.handlers:
        package_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


def reset_logging() -> None:
    """Remove handlers installed by :func:`configure_logging` (used between tests)."""

    global _configured
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
    _configured = False


__all__ = ["configure_logging", "get_logger", "resolve_level", "reset_logging"]
