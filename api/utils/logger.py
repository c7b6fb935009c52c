"""
Logging setup for SketchMatch

Console and rotating-file handlers configured from the `logging` section of
engine_config.yaml, a per-module logger registry, a session context adapter
and a timing decorator for the image pipeline.
"""

import functools
import logging
import logging.handlers
import time
from pathlib import Path
from typing import Dict, List, Optional
import sys


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_MAX_BYTES = 10485760  # 10 MB

_loggers: Dict[str, logging.Logger] = {}


def _level(name: str) -> int:
    level = logging.getLevelName(str(name).upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {name}")
    return level


def _handlers(
    level: int,
    formatter: logging.Formatter,
    log_file: Optional[str],
    max_bytes: int,
    backup_count: int,
    console_enabled: bool,
    file_enabled: bool
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if console_enabled:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(level)
        handlers.append(console)
    if file_enabled and log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8'
        )
        # File keeps debug output (pipeline timings) regardless of console level
        rotating.setLevel(logging.DEBUG)
        handlers.append(rotating)
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(
    log_level: str = "INFO",
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    log_file: Optional[str] = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = 5,
    console_enabled: bool = True,
    file_enabled: bool = False
):
    """
    Configure the root logger.

    Existing root handlers are replaced, so calling this twice does not
    duplicate output.

    Example:
        >>> setup_logging(log_level="DEBUG")
    """
    level = _level(log_level)
    formatter = logging.Formatter(log_format or DEFAULT_FORMAT, datefmt=date_format or DEFAULT_DATE_FORMAT)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(min(level, logging.DEBUG) if file_enabled and log_file else level)
    for handler in _handlers(level, formatter, log_file, max_bytes, backup_count, console_enabled, file_enabled):
        root.addHandler(handler)

    root.info(
        f"Logging initialized: level={logging.getLevelName(level)}, "
        f"file={log_file if file_enabled and log_file else 'disabled'}"
    )


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get or create a logger for a specific module.

    Args:
        name: Logger name (usually __name__)
        level: Optional log level override
    """
    logger = _loggers.get(name)
    if logger is None:
        logger = logging.getLogger(name)
        _loggers[name] = logger
    if level:
        logger.setLevel(_level(level))
    return logger


def setup_from_config(config):
    """
    Configure logging from a ConfigLoader or a full config dict.

    Per-module levels come from `logging.loggers`, e.g.
    `image_processing.outline: DEBUG` to see pipeline timings.
    """
    if hasattr(config, 'get_section'):
        section = config.get_section('logging')
    elif isinstance(config, dict):
        section = config.get('logging', {})
    else:
        raise TypeError(f"config must be ConfigLoader or dict, got {type(config)}")

    file_section = section.get('file', {})
    setup_logging(
        log_level=section.get('level', 'INFO'),
        log_format=section.get('format'),
        date_format=section.get('date_format'),
        log_file=file_section.get('path'),
        max_bytes=file_section.get('max_bytes', DEFAULT_MAX_BYTES),
        backup_count=file_section.get('backup_count', 5),
        console_enabled=section.get('console', {}).get('enabled', True),
        file_enabled=file_section.get('enabled', False)
    )

    for module_name, module_level in (section.get('loggers') or {}).items():
        get_logger(module_name, module_level)


class LoggerAdapter(logging.LoggerAdapter):
    """
    Prefixes messages with key=value context.

    Example:
        >>> log = LoggerAdapter(get_logger(__name__), {'session': 'a1b2'})
        >>> log.info("Auto-align finished")
        # Output: ... - INFO - [session=a1b2] Auto-align finished
    """

    def process(self, msg, kwargs):
        if self.extra:
            context = ', '.join(f"{k}={v}" for k, v in self.extra.items())
            msg = f"[{context}] {msg}"
        return msg, kwargs


def log_execution_time(logger: logging.Logger):
    """Decorator logging how long each call took (debug) or when it failed (error)."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(f"{func.__qualname__} failed after {time.perf_counter() - start:.3f}s: {e}")
                raise
            logger.debug(f"{func.__qualname__} took {(time.perf_counter() - start) * 1000:.1f} ms")
            return result
        return wrapper
    return decorator
