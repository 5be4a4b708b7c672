"""
Logging setup for the askflow package logger.

Every record is stamped with the id of the ask call / graph run that emitted
it, taken from a ContextVar, so concurrent runs can be told apart in logs.
"""

import contextvars
import logging
import sys
from contextlib import contextmanager
from typing import Iterator

from .config import ClientConfig

PACKAGE_LOGGER = "askflow"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(run_id)s] %(name)s:%(message)s"

_run_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("run_id", default="-")


class RunIDFilter(logging.Filter):
    """Injects the current run ID into every log record."""
    def filter(self, record):
        record.run_id = _run_id_ctx.get("-")
        return True


@contextmanager
def bind_run_id(run_id: str) -> Iterator[None]:
    """Set the run ID for log records emitted inside the block."""
    token = _run_id_ctx.set(run_id)
    try:
        yield
    finally:
        _run_id_ctx.reset(token)


def current_run_id() -> str:
    return _run_id_ctx.get("-")


def configure_logging(config: ClientConfig) -> logging.Logger:
    """
    Configure the ``askflow`` logger from client config.

    Idempotent: the stderr handler is installed only once, the level is
    updated on every call.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(getattr(logging, config.log_level, logging.ERROR))

    if not logger.handlers:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        console.addFilter(RunIDFilter())
        logger.addHandler(console)

    return logger
