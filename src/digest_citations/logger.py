"""Logging helpers shared by every module of the package."""
import logging
import os
from logging.handlers import RotatingFileHandler

MAX_LOG_SIZE = 5 * 1024 * 1024
BACKUP_COUNT = 3


def get_logger(name: str) -> logging.Logger:
    """Return the module-level logger for ``name``."""
    return logging.getLogger(name)


def setup_logging(level: str | None = None, log_file: str | None = None) -> logging.Logger:
    """
    Configure the root logger with a console handler and an optional rotating file handler.

    :param level: Level name (DEBUG, INFO, ...). Falls back to ``LOG_LEVEL`` env, then INFO.
    :param log_file: Optional path of a rotating log file.
    :return: The configured root logger.
    """
    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO")
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(numeric_level)
    if root.handlers:
        return root

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        datefmt="%H:%M:%S",
    ))
    root.addHandler(console_handler)

    if log_file:
        parent_dir = os.path.dirname(log_file)
        if parent_dir and not os.path.exists(parent_dir):
            os.makedirs(parent_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=log_file,
            maxBytes=MAX_LOG_SIZE,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        root.addHandler(file_handler)

    return root
