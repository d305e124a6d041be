import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOGGER_NAME = "atci"
LOG_FILE_NAME = "log.log"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3


def _resolve_log_dir(log_dir: Optional[Path]) -> Path:
    if log_dir is None:
        log_dir = Path(os.getenv("ATCI_HOME", str(Path.home() / ".atci")))
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def _reset_handlers(logger: logging.Logger) -> None:
    # setup_logging may run more than once per process (tests, restarts)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()


def setup_logging(log_level: str = "INFO", log_dir: Optional[Path] = None) -> logging.Logger:
    """Attach a rotating <atci_dir>/log.log handler and a console handler to the atci logger"""
    log_file = _resolve_log_dir(log_dir) / LOG_FILE_NAME

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    _reset_handlers(logger)

    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = RotatingFileHandler(log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # The worker runs in the foreground; mirror everything to the terminal
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    logger.info(f"Logging initialized at {logging.getLevelName(logger.level)}. Log file: {log_file}")
    return logger


def log_exception(logger: logging.Logger, message: str) -> None:
    """Log an error message together with the active traceback"""
    logger.error(message, exc_info=True)
