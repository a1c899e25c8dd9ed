"""Loguru logging setup for specrepo.

The library never configures sinks on import. Applications call
``configure_logging()`` once; until then loguru's default stderr sink is
used.
"""

import logging
import sys
import typing as t
from inspect import currentframe

from loguru import logger

from .config import LoggerSettings, get_logger_settings

Logger = type(logger)

_SQL_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "sqlalchemy.orm")


class InterceptHandler(logging.Handler):
    """Handler to intercept standard library logging and route to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = (currentframe(), 0)
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).bind(
            mod_name=record.name,
        ).log(level, record.getMessage())


def _patch(record: dict[str, t.Any]) -> None:
    record["extra"].setdefault("mod_name", record["name"].split(".")[-1])


def configure_logging(settings: LoggerSettings | None = None) -> list[int]:
    """Replace loguru's sinks with one stderr sink built from settings.

    Returns:
        Ids of the sinks that were added
    """
    settings = settings or get_logger_settings()
    logger.remove()
    logger.configure(patcher=t.cast("t.Any", _patch))
    sink_id = logger.add(
        sys.stderr,
        level=settings.log_level,
        format="".join(settings.format.values()),
        serialize=settings.serialize,
        colorize=settings.colorize and not settings.serialize,
        backtrace=False,
        diagnose=False,
    )
    if settings.intercept_sql:
        for name in _SQL_LOGGERS:
            sql_logger = logging.getLogger(name)
            sql_logger.handlers = [InterceptHandler()]
            sql_logger.setLevel(settings.sql_level)
            sql_logger.propagate = False
    return [sink_id]


def get_logger(name: str, **context: t.Any) -> "Logger":
    """Return a loguru logger bound to a module name and extra context."""
    return logger.bind(mod_name=name, **context)


__all__ = ["InterceptHandler", "Logger", "configure_logging", "get_logger"]
