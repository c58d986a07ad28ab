"""Centralized logging configuration for the ``statement_ledger`` package.

- ``configure_logging(...)``: attach a single ``StreamHandler`` to the package
  logger (``"statement_ledger"``). Entry points (the CLI, a host service)
  call it once at startup.
- ``get_logger(name)``: acquire a module logger; until configuration runs the
  package logger carries a ``NullHandler`` so library use stays silent.

Library modules never attach handlers of their own; they call
``get_logger("statement_ledger.<module>")`` and emit ``event key=value`` lines.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "statement_ledger"
_LEVEL_ENV = "LEDGER_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_CONFIGURED = False


def _parse_level(level: int | str | None) -> int:
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
    env_val = os.getenv(_LEVEL_ENV)
    if env_val:
        return _parse_level(env_val)
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Configure the package logger exactly once.

    Parameters
    ----------
    level:
        ``int`` or level name. ``None`` reads ``LEDGER_LOG_LEVEL`` and falls
        back to ``INFO``.
    fmt:
        Optional format string for the handler.
    stream:
        Destination of the single ``StreamHandler``.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))

    logger.setLevel(resolved)
    logger.addHandler(handler)
    logger.propagate = False

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger by name with a silent default until configured."""

    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger"]
