"""Loguru sink setup for the worker process."""
from __future__ import annotations

import sys

from loguru import logger

from queue_worker.app.config.settings import Settings
from queue_worker.app.core import SERVICE_NAME

_TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "{extra[event]} {message} | {extra}"
)


def configure_logging(settings: Settings) -> None:
    """Replace loguru's default sink with one stderr sink honouring LOG_LEVEL / LOG_JSON."""
    logger.remove()
    # unbound records (plain logger.warning) still need the keys the format reads
    logger.configure(extra={"service_name": SERVICE_NAME, "event": ""})
    level = settings.log_level.upper()
    if settings.log_json:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=_TEXT_FORMAT)
