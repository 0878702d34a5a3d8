"""Logging utilities for resflow."""

import logging
from typing import Literal, Union

from rich.console import Console
from rich.logging import RichHandler

_LOG_NAMESPACE = "resflow"


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger nested under the resflow namespace.

    Args:
        name: The name of the logger. Module paths that already start with
            'resflow.' are used as-is.

    Returns:
        logging.Logger: A configured logger instance.
    """
    if name == _LOG_NAMESPACE or name.startswith(f"{_LOG_NAMESPACE}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_LOG_NAMESPACE}.{name}")


def configure_logging(
    level: Union[Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], int] = "INFO",
) -> None:
    """
    Configure logging for resflow.

    Args:
        level: The log level to use (string or int).
    """
    logger = logging.getLogger(_LOG_NAMESPACE)
    # Remove any existing handlers to avoid duplicates on reconfiguration
    for hdlr in logger.handlers[:]:
        logger.removeHandler(hdlr)

    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)

    if isinstance(level, str):
        level = level.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {level}")
        logger.setLevel(getattr(logging, level))
    else:
        logger.setLevel(level)
