import logging
from logging.handlers import RotatingFileHandler

import pytest

from stockledger.logger import setup_logger


@pytest.fixture()
def named_logger():
    logger = logging.getLogger("stockledger.test_run")
    yield logger
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_setup_writes_to_log_file(named_logger, tmp_path):
    log_file = tmp_path / "logs" / "run.log"
    logger = setup_logger(named_logger.name, "DEBUG", log_file=log_file)

    assert logger is named_logger
    assert logger.level == logging.DEBUG
    assert any(isinstance(h, RotatingFileHandler) for h in logger.handlers)

    logger.debug("Sale SALE-1 opened.")
    for handler in logger.handlers:
        handler.flush()
    text = log_file.read_text(encoding="utf-8")
    assert "stockledger.test_run - DEBUG - Sale SALE-1 opened." in text


def test_setup_is_idempotent(named_logger, tmp_path):
    setup_logger(named_logger.name, log_file=tmp_path / "a.log")
    setup_logger(named_logger.name, log_file=tmp_path / "a.log")
    assert len(named_logger.handlers) == 2
