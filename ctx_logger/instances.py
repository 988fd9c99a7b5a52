"""
Default logger instance with lazy initialization.

Usage:
    import ctx_logger

    # Option 1: Package-level functions use the default logger
    ctx_logger.info("Worker started", {"queue": "emails"})

    # Option 2: Pre-built proxy (lazy-initialized on first access)
    from ctx_logger import logger
    logger.with_data({"job": 12}).warn("Retrying")

    # Option 3: Derive from the default explicitly
    log = get_logger().with_root({"component": "scheduler"})

The default logger writes to standard output. It is built once and never
modified afterwards (only derived from), so it can be shared freely across
threads and tasks.
"""
import threading
from typing import Any, Mapping

from .logger import Logger

_default_logger = None
_default_logger_lock = threading.Lock()


def get_logger() -> Logger:
    """
    Get or create the process-wide default logger.

    On first call, builds a Logger writing to stdout. Subsequent calls
    return the same instance.
    """
    global _default_logger

    if _default_logger is None:
        with _default_logger_lock:
            if _default_logger is None:
                _default_logger = Logger()

    return _default_logger


def info(message: str, *fields: Mapping[str, Any]) -> None:
    """Write an info-level event through the default logger."""
    get_logger().info(message, *fields)


def warn(message: str, *fields: Mapping[str, Any]) -> None:
    """Write a warn-level event through the default logger."""
    get_logger().warn(message, *fields)


def error(message: str, *fields: Mapping[str, Any]) -> None:
    """Write an error-level event through the default logger."""
    get_logger().error(message, *fields)


def debug(message: str, *fields: Mapping[str, Any]) -> None:
    """Write a debug-level event through the default logger."""
    get_logger().debug(message, *fields)


def fatal(message: str, *fields: Mapping[str, Any]) -> None:
    """Write a fatal-level event through the default logger, then exit(1)."""
    get_logger().fatal(message, *fields)


class _LazyLogger:
    """
    Proxy that initializes the default logger on first use.

    This allows importing `logger` without building anything until an
    actual log call is made.
    """

    def __getattr__(self, name):
        return getattr(get_logger(), name)

    def __repr__(self) -> str:
        return f"<lazy {get_logger()!r}>"


# Lazy-initialized default logger for convenience
logger = _LazyLogger()
