"""
Logging configuration for the NH Childcare Payments Tracker.

One "nh_childcare" logger writes to stdout and, unless LOG_TO_FILE is
off, to logs/<name>.log. Components log through child loggers so the
file shows which stage (bridge, resolver, analyzer) emitted a line.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from config.settings import settings

ROOT_LOGGER_NAME = "nh_childcare"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _log_dir() -> Path:
    return Path(settings.LOG_DIR) if settings.LOG_DIR else settings.project_root / "logs"


def setup_logging(name: str = ROOT_LOGGER_NAME, log_to_file: Optional[bool] = None) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        name: Logger name
        log_to_file: Override settings.LOG_TO_FILE

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if settings.LOG_TO_FILE if log_to_file is None else log_to_file:
        log_dir = _log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / f"{name}.log")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(component: str) -> logging.Logger:
    """Child of the tracker logger, e.g. get_logger("bridge") -> nh_childcare.bridge."""
    return logger.getChild(component)


# Default logger
logger = setup_logging()
