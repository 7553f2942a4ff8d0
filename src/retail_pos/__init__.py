"""Retail point-of-sale core backed by an Excel workbook.

Importing the package sets up the shared ``log`` object. Records go to a
rotating file under ``RETAIL_POS_LOG_DIR`` (default ``<project>/.logs``) and
to stderr at ``RETAIL_POS_LOG_LEVEL`` (default ``WARNING``).
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUPS = 5


def log_file_path() -> Path:
    """Where the rotating log lives, honouring ``RETAIL_POS_LOG_DIR``."""

    override = os.getenv("RETAIL_POS_LOG_DIR")
    directory = Path(override).expanduser() if override else PROJECT_ROOT / ".logs"
    return directory / "retail_pos.log"


def console_level() -> int:
    name = os.getenv("RETAIL_POS_LOG_LEVEL", "WARNING").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.WARNING


def _file_handler(formatter: logging.Formatter) -> Optional[logging.Handler]:
    target = log_file_path()
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(target, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8")
    except OSError as exc:
        print(f"Warning: unable to initialize log file at '{target}': {exc}", file=sys.stderr)
        return None
    handler.setLevel(logging.INFO)
    handler.setFormatter(formatter)
    return handler


def configure_logging(logger: Optional[logging.Logger] = None) -> logging.Logger:
    """Attach the file and console handlers once; later calls are no-ops."""

    logger = logger or logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG if console_level() <= logging.DEBUG else logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    file_handler = _file_handler(formatter)
    if file_handler is not None:
        logger.addHandler(file_handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level())
    console.setFormatter(formatter)
    logger.addHandler(console)
    return logger


log = configure_logging()
log.debug("Logging to '%s'", log_file_path())
