"""
Logging configuration with rotation for the LUIS trainer
"""
import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional
from config import settings

LOG_DIR = Path("logs")

CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _rotating_handler(filename: str, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        LOG_DIR / filename,
        maxBytes=settings.log_file_max_bytes,
        backupCount=settings.log_file_backup_count
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def get_logger(name: str, log_file: Optional[str] = None) -> logging.Logger:
    """Get configured logger instance with rotation"""
    LOG_DIR.mkdir(exist_ok=True)

    logger = logging.getLogger(name)

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logger.setLevel(logging.DEBUG)

    # Prevent duplicate logs
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))

    logger.addHandler(console_handler)
    # Request-level debug lines only go to the file
    logger.addHandler(_rotating_handler(log_file or "luis_trainer.log", logging.DEBUG))
    logger.addHandler(_rotating_handler("errors.log", logging.ERROR))

    logger.propagate = False

    return logger


def configure_root_logger():
    """Configure the root logger for third-party libraries (aiohttp)"""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.WARNING)

    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        root_logger.addHandler(handler)


# Call this when the application starts
configure_root_logger()
