"""
Structured JSON logging with request-scoped context.

This package provides:
- An immutable Logger that accumulates fields (derive, never mutate)
- One JSON line per event with a fixed schema: timestamp, host, release,
  top-level root fields, id, nested data, nested error, nanoseconds,
  message, level
- Request-scoped loggers carried in the request scope or a context variable
- Starlette request logging middleware with latency measurement
- A process-wide default logger behind package-level functions

Usage:
    import ctx_logger
    from ctx_logger import Logger

    # Package-level logging through the default (stdout) logger
    ctx_logger.info("Service starting", {"port": 8000})

    # Derive loggers; the original is never modified
    log = Logger().with_root({"service": "billing"})
    log.with_data({"user_id": 123}).info("User created")
    log.with_error(exc).error("Charge failed")

Middleware Usage (FastAPI/Starlette):
    from ctx_logger import RequestLoggingMiddleware, from_request

    app.add_middleware(
        RequestLoggingMiddleware,
        is_ignorable_error=lambda err: isinstance(err, NotFound),
    )

    async def endpoint(request):
        from_request(request).info("Processing")  # includes id, method, path, ...

Environment variables:
    RELEASE: release tag included in every event as "release"
"""

__version__ = "0.1.0"

from .logger import Data, Logger, StackTracer, TracedError
from .context import (
    attach_to_context,
    bind_to_scope,
    from_context,
    from_request,
    set_current_logger,
    reset_current_logger,
    current_logger,
)
from .instances import get_logger, logger, info, warn, error, debug, fatal
from .request_logger import RequestLoggingMiddleware

__all__ = [
    # Version
    "__version__",
    # Logger
    "Data",
    "Logger",
    "StackTracer",
    "TracedError",
    # Context management
    "attach_to_context",
    "bind_to_scope",
    "from_context",
    "from_request",
    "set_current_logger",
    "reset_current_logger",
    "current_logger",
    # Default logger (lazy-initialized)
    "get_logger",
    "logger",
    "info",
    "warn",
    "error",
    "debug",
    "fatal",
    # Middleware
    "RequestLoggingMiddleware",
]
