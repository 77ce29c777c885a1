"""
Logging for LeaseBid.

Every module logs through a `leasebid.<subsystem>` child logger. Nothing
is attached until setup_logging() runs (the CLI does this), so embedding
applications keep control of handlers.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import colorlog

ROOT_LOGGER = "leasebid"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)-8s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",  # collaborator fallbacks
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def get_logger(name: str) -> logging.Logger:
    """Logger for a subsystem, e.g. get_logger("lease") -> leasebid.lease"""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """
    Attach a colored stderr handler (and optionally a plain file handler)
    to the `leasebid` logger.

    Safe to call repeatedly: existing handlers are replaced, so the
    console handler always writes to the current sys.stderr.

    Args:
        level: Logging level for the package
        log_file: Also append records to this file

    Returns:
        The package root logger
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = colorlog.StreamHandler(sys.stderr)
    console.setFormatter(
        colorlog.ColoredFormatter(
            "%(log_color)s" + LOG_FORMAT.replace("%(levelname)-8s", "%(levelname)-8s%(reset)s"),
            datefmt=DATE_FORMAT,
            log_colors=LOG_COLORS,
        )
    )
    root.addHandler(console)

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(file_handler)

    return root


__all__ = ["get_logger", "setup_logging"]
