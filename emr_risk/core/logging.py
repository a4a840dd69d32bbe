"""
Logging setup.

Every component logs under the ``emr_risk`` namespace. Handlers live on the
namespace logger only; component loggers propagate to it.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from emr_risk.core.config import get_settings

ROOT_LOGGER = "emr_risk"

CONSOLE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"


def configure_logging(
    level: Optional[str] = None,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Attach console and file handlers to the ``emr_risk`` logger.

    Calling it again replaces the previous handlers.

    Args:
        level: Logging level name. Defaults to ``settings.log_level``.
        log_file: Destination of the detailed log. Defaults to
            ``settings.log_file_path``.

    Returns:
        The namespace logger
    """
    settings = get_settings()
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel((level or settings.log_level).upper())
    root.propagate = False

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    root.addHandler(console)

    log_file = log_file or settings.log_file_path
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(file_handler)

    return root


def setup_logging(name: str) -> logging.Logger:
    """
    Logger for one component, e.g. ``setup_logging("orchestrator")``.

    Configures the namespace logger on first use.
    """
    if not logging.getLogger(ROOT_LOGGER).handlers:
        configure_logging()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
