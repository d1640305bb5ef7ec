"""Logging setup for the billing API and batch jobs.

Level comes from LOG_LEVEL (default INFO). The API server logs to stdout and a
file; batch jobs (penalty runs, balance rebuilds) may log to stdout only.
"""

import logging
import os
import sys
from pathlib import Path

LOG_FORMAT = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Libraries that are noisy at INFO
QUIET_LOGGERS = ("sqlalchemy.engine", "httpx")


def get_log_level() -> int:
    """Logging level from LOG_LEVEL; unknown names fall back to INFO."""
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def setup_server_logging(log_file: str | None = "logs/server.log") -> None:
    """Configure the root logger.

    Args:
        log_file: File to log to in addition to stdout; None for stdout only

    Existing root handlers are replaced, so calling this twice does not
    duplicate output.
    """
    level = get_log_level()
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    if level > logging.DEBUG:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["setup_server_logging", "get_log_level"]
