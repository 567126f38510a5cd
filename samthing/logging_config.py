import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import List

from . import config


# websockets logs every frame at DEBUG; pynput logs listener internals.
_QUIET_LOGGERS = ("websockets", "websockets.client", "pynput")
_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s"


def _level() -> int:
    return logging.DEBUG if config.DEBUG else logging.INFO


def _route_quiet_loggers(level: int, handlers: List[logging.Handler]) -> None:
    for name in _QUIET_LOGGERS:
        ql = logging.getLogger(name)
        ql.handlers.clear()
        ql.propagate = False
        ql.setLevel(level)
        for handler in handlers:
            ql.addHandler(handler)


def setup_logging() -> logging.Logger:
    """Configure the `samthing` logger from the current config module state."""
    logger = logging.getLogger("samthing")
    logger.setLevel(_level())

    if not config.LOG_ENABLED:
        logger.handlers.clear()
        logger.addHandler(logging.NullHandler())
        logger.propagate = False
        _route_quiet_loggers(logging.CRITICAL, [])
        return logger

    if logger.handlers:
        return logger

    os.makedirs(os.path.dirname(config.LOG_FILE) or ".", exist_ok=True)
    fmt = logging.Formatter(_FORMAT)
    handlers: List[logging.Handler] = [
        RotatingFileHandler(config.LOG_FILE, maxBytes=2_000_000, backupCount=3, encoding="utf-8")
    ]
    if config.CONSOLE_LOG:
        handlers.append(logging.StreamHandler(sys.stdout))
    for handler in handlers:
        handler.setFormatter(fmt)
        handler.setLevel(_level())
        logger.addHandler(handler)

    _route_quiet_loggers(logging.DEBUG if config.DEBUG else logging.WARNING, handlers)
    return logger


log = setup_logging()


def reload_logging() -> logging.Logger:
    """Reload logger level and handlers from current configuration."""
    logger = logging.getLogger("samthing")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True

    for name in _QUIET_LOGGERS:
        ql = logging.getLogger(name)
        ql.handlers.clear()
        ql.propagate = True

    return setup_logging()
