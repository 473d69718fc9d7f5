"""Logging configuration for development and production."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime

LOGGER_NAME = "gorge"

_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}

_LEVEL_COLORS = {
    logging.DEBUG: 35,
    logging.INFO: 34,
    logging.WARNING: 33,
    logging.ERROR: 31,
    logging.CRITICAL: 31,
}


def _level_name(levelno: int) -> str:
    return _LEVEL_NAMES.get(levelno, logging.getLevelName(levelno).lower())


class _JsonFormatter(logging.Formatter):
    """One JSON object per line, as used in production."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "level": _level_name(record.levelno),
            "ts": record.created,
            "caller": f"{record.filename}:{record.lineno}",
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["stacktrace"] = self.formatException(record.exc_info)
        return json.dumps(entry)


class _ConsoleFormatter(logging.Formatter):
    """Tab-separated, human-readable lines with coloured level names."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = (
            datetime.fromtimestamp(record.created)
            .astimezone()
            .isoformat(timespec="milliseconds")
        )
        color = _LEVEL_COLORS.get(record.levelno, 31)
        level = f"\x1b[{color}m{_level_name(record.levelno).upper()}\x1b[0m"
        line = "\t".join(
            (stamp, level, f"{record.filename}:{record.lineno}", record.getMessage())
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(dev: bool) -> logging.Logger:
    """Configure and return the package logger.

    Development mode logs from DEBUG in a coloured console format;
    otherwise from INFO as JSON lines. Calling it again replaces the
    previous configuration.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handler = logging.StreamHandler(sys.stderr)
    if dev:
        handler.setFormatter(_ConsoleFormatter())
        logger.setLevel(logging.DEBUG)
    else:
        handler.setFormatter(_JsonFormatter())
        logger.setLevel(logging.INFO)
    logger.addHandler(handler)
    logger.propagate = False
    return logger