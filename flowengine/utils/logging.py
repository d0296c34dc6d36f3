"""Logging helpers.

get_logger() has no dependencies and is safe to import anywhere;
setup_logging() is called once by the host application at startup.
"""

import logging
import os
import sys

ROOT_LOGGER = "flowapi"


def get_logger(name: str) -> logging.Logger:
    """Return a logger nested under the project root logger."""
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(log_level: str | None = None) -> None:
    """Configure the project root logger.

    Args:
        log_level: level name, read from the LOG_LEVEL environment variable by default.
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")
    level = getattr(logging, log_level.upper(), logging.INFO)

    # leave uvicorn's own loggers alone
    app_logger = logging.getLogger(ROOT_LOGGER)
    app_logger.setLevel(level)

    if not app_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        app_logger.addHandler(handler)
        app_logger.propagate = False
