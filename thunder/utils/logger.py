# Logger - Centralized Logging System
# The "thunder" logger owns the handlers; components log through children

"""
Logger Module

Responsibilities:
- Configure a named logger's level, console and rotating file handlers
- Hand out "thunder.<component>" child loggers that propagate to it

The runner calls setup_logger("thunder", level, log_file) once with the
configured values; every component logger then follows that level and
reaches the same file.
"""

import logging
import sys
import atexit
from pathlib import Path
from logging.handlers import RotatingFileHandler

ROOT_LOGGER = "thunder"

# Handlers installed by setup_logger, per logger name
_installed_handlers = {}

def setup_logger(name: str = ROOT_LOGGER, level: str = "INFO", log_file: str = None):
    """
    Setup logger with console and file handlers

    Calling it again for the same name replaces the handlers it installed
    earlier, so the level and file can be changed after startup.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    log_level = getattr(logging, level.upper())

    for handler in _installed_handlers.pop(name, []):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(log_level)
    logger.propagate = False

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)
    handlers.append(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    for handler in handlers:
        logger.addHandler(handler)
    _installed_handlers[name] = handlers

    return logger

def component_logger(component: str) -> logging.Logger:
    """Child of the "thunder" logger (level and handlers come from it)"""
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")

def _close_handlers():
    for name, handlers in list(_installed_handlers.items()):
        logger = logging.getLogger(name)
        for handler in handlers:
            logger.removeHandler(handler)
            handler.close()
    _installed_handlers.clear()

atexit.register(_close_handlers)
