"""Logging for the ``bank_import`` package.

Library modules log through ``get_logger("bank_import.<module>")`` with
``stage:event key=value`` messages and never attach handlers; the package
logger carries a ``NullHandler`` so nothing is printed unless a host
application (or the CLI, via :func:`configure_logging`) asks for it.

Example output::

    12:01:07 INFO  pipeline  import:done format=ANZ_NZ read=5 rejected=0 accepted=4
"""

from __future__ import annotations

import logging
import sys
from typing import IO

from .config import ImportSettings

_PKG = "bank_import"
_HANDLER_NAME = "bank_import.console"

logging.getLogger(_PKG).addHandler(logging.NullHandler())


class EventFormatter(logging.Formatter):
    """Render records as ``time level module message``.

    The ``bank_import.`` prefix is dropped from logger names so lines stay
    short; foreign loggers keep their full name.
    """

    def __init__(self, *, with_time: bool = True) -> None:
        super().__init__(datefmt="%H:%M:%S")
        self._with_time = with_time

    def format(self, record: logging.LogRecord) -> str:
        name = record.name
        if name.startswith(_PKG + "."):
            name = name[len(_PKG) + 1 :]
        line = f"{record.levelname:<5} {name:<9} {record.getMessage()}"
        if self._with_time:
            line = f"{self.formatTime(record, self.datefmt)} {line}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def resolve_level(level: int | str | None = None, settings: ImportSettings | None = None) -> int:
    """Explicit ``level`` first, then ``settings.log_level``, then ``BANK_IMPORT_LOG_LEVEL``.

    Raises ``ValueError`` for an unknown level name.
    """

    if isinstance(level, int):
        return level
    if level is None:
        name = (settings or ImportSettings.from_env()).log_level
    else:
        name = ImportSettings(log_level=level).log_level
    return logging.getLevelNamesMapping()[name]


def configure_logging(
    level: int | str | None = None,
    *,
    settings: ImportSettings | None = None,
    stream: IO[str] | None = None,
    with_time: bool = True,
) -> logging.Handler:
    """Send package logs to ``stream`` (stderr by default).

    Calling again replaces the handler installed by the previous call, so
    the level can be changed at runtime without duplicating output.
    """

    resolved = resolve_level(level, settings)
    reset_logging()
    logger = logging.getLogger(_PKG)
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(EventFormatter(with_time=with_time))
    logger.addHandler(handler)
    logger.setLevel(resolved)
    logger.propagate = False
    return handler


def reset_logging() -> None:
    """Remove the handler installed by :func:`configure_logging`."""

    logger = logging.getLogger(_PKG)
    for h in list(logger.handlers):
        if h.get_name() == _HANDLER_NAME:
            logger.removeHandler(h)
            h.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


def get_logger(name: str) -> logging.Logger:
    if name != _PKG and not name.startswith(_PKG + "."):
        name = f"{_PKG}.{name}"
    return logging.getLogger(name)


__all__ = [
    "EventFormatter",
    "configure_logging",
    "reset_logging",
    "get_logger",
    "resolve_level",
]
