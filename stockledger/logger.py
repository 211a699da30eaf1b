import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from . import settings

CONSOLE_FORMAT = "%(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LOG_FILE_NAME = "ledger.log"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 3


def _rotating_file_handler(log_file: Path, log_level: int | str) -> RotatingFileHandler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_file, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
    )
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def setup_logger(
    name: str = None,
    log_level: int | str = settings.LOG_LEVEL,
    log_file: Path | str | None = None,
) -> logging.Logger:
    """
    Attaches a plain console handler and a rotating file handler to the
    named logger (the root logger by default). `log_file` defaults to
    ledger.log under LOG_DIR. A logger that already has handlers is
    returned as is.
    """
    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console_handler)

    target = Path(log_file) if log_file is not None else settings.LOG_DIR / LOG_FILE_NAME
    logger.addHandler(_rotating_file_handler(target, log_level))
    return logger
