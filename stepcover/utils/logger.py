"""Logging setup shared by all stepcover modules"""
import logging
import os
import sys
from typing import Dict, Optional, Union

from colorama import Fore, Style

LOG_FORMAT = '[%(asctime)s] %(levelname)s %(name)s: %(message)s'

_LEVEL_COLORS: Dict[int, str] = {
    logging.DEBUG: Fore.CYAN,
    logging.INFO: Fore.GREEN,
    logging.WARNING: Fore.YELLOW,
    logging.ERROR: Fore.RED,
    logging.CRITICAL: Fore.RED + Style.BRIGHT,
}

_loggers: Dict[str, logging.Logger] = {}


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name when writing to a terminal"""

    def __init__(self, fmt: str = LOG_FORMAT, use_color: bool = True):
        super().__init__(fmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_color:
            return super().format(record)

        original = record.levelname
        color = _LEVEL_COLORS.get(record.levelno, '')
        record.levelname = f"{color}{original}{Style.RESET_ALL}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def _default_level() -> int:
    level_name = os.environ.get('STEPCOVER_LOG_LEVEL', 'INFO').upper()
    return getattr(logging, level_name, logging.INFO)


def setup_logger(name: str, level: Optional[Union[int, str]] = None) -> logging.Logger:
    """Create (or return) a logger writing to stderr"""
    logger = logging.getLogger(name)

    if name not in _loggers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ColoredFormatter(use_color=sys.stderr.isatty()))
        logger.addHandler(handler)
        logger.propagate = False
        _loggers[name] = logger

    if level is None:
        logger.setLevel(_default_level())
    else:
        logger.setLevel(level)

    return logger


def set_log_level(level: Union[int, str]) -> None:
    """Change the level of every logger created through setup_logger"""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    for logger in _loggers.values():
        logger.setLevel(level)
