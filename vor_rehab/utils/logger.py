"""
Logging configuration for the VOR rehabilitation core
Console output for the operator, optional per-day file log for session review
"""

import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Any, Dict, Optional, Union

DEFAULT_LOGGER_NAME = "vor_rehab"
DEFAULT_LOG_DIR = "logs"

DETAILED_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s'
SIMPLE_FORMAT = '%(levelname)s: %(message)s'


def _resolve_level(level: Union[str, int, None], default: int = logging.INFO) -> int:
    if isinstance(level, int):
        return level
    if not level:
        return default
    return getattr(logging, str(level).upper(), default)


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(SIMPLE_FORMAT))
    return handler


def _file_handler(log_dir: Optional[str], log_file: Optional[str], name: str) -> logging.FileHandler:
    log_directory = Path(log_dir) if log_dir else Path(DEFAULT_LOG_DIR)
    log_directory.mkdir(parents=True, exist_ok=True)

    if not log_file:
        log_file = f"{name}_{datetime.now().strftime('%Y%m%d')}.log"

    handler = logging.FileHandler(log_directory / log_file, mode='a', encoding='utf-8')
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(DETAILED_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    return handler


def setup_logger(
    name: str = DEFAULT_LOGGER_NAME,
    log_level: Union[str, int] = "INFO",
    log_dir: Optional[str] = None,
    log_file: Optional[str] = None,
    console_output: bool = True,
    console_level: Union[str, int, None] = None
) -> logging.Logger:
    """
    Setup logger with console and optional file handlers

    Calling it again for the same name replaces the previous handlers, so the
    CLI and the server can each reconfigure the shared logger.

    Args:
        name: Logger name
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL) or int
        log_dir: Directory for log files; enables file logging (default dir: 'logs')
        log_file: Log file name; enables file logging (default: '<name>_YYYYMMDD.log')
        console_output: Whether to output to stdout
        console_level: Threshold for the console handler (default: INFO)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(_resolve_level(log_level))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if console_output:
        logger.addHandler(_console_handler(_resolve_level(console_level)))

    if log_dir or log_file:
        file_handler = _file_handler(log_dir, log_file, name)
        logger.addHandler(file_handler)
        logger.info(f"Logging to file: {file_handler.baseFilename}")

    return logger


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """
    Get existing logger instance

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def setup_logger_from_config(config: Optional[Dict[str, Any]], name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """
    Setup logger from the `logging` section of the YAML config.

    Recognized keys: level, console_level, console_output, to_file, log_dir, log_file.
    File logging is off unless `to_file` is true.
    """
    section = (config or {}).get('logging') or {}
    to_file = bool(section.get('to_file', False))

    return setup_logger(
        name=name,
        log_level=section.get('level', 'INFO'),
        log_dir=(section.get('log_dir') or DEFAULT_LOG_DIR) if to_file else None,
        log_file=section.get('log_file') if to_file else None,
        console_output=bool(section.get('console_output', True)),
        console_level=section.get('console_level'),
    )
