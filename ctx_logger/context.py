"""
Logger Context Management

Two ways to hand a request-scoped Logger to downstream code:

1. Explicit carrier: a mapping (an ASGI scope, or any dict passed alongside a
   call) holding the logger under a private key. The request middleware
   stores its logger in the request scope; handlers read it back with
   from_request(request).

2. Ambient carrier: a context variable. Context variables are like
   thread-local storage but work correctly with async code, so code deep in
   a call chain can call current_logger() without a request object.

Lookups never fail: when no logger is attached, a fresh default Logger
(writing to stdout) is returned.

Usage:
    from ctx_logger import attach_to_context, from_context, from_request

    ctx = attach_to_context({}, log.with_id("req-123"))
    from_context(ctx).info("Processing")  # includes id "req-123"

    async def endpoint(request):
        from_request(request).info("Handling")
"""
import contextvars
from typing import Any, Mapping, MutableMapping, Optional

from .logger import Logger


class _LoggerKey:
    """Private key type; no other code can construct an equal key."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "<ctx_logger key>"


_KEY = _LoggerKey()

# Async-safe context variable scoped per request
current_logger_ctx: contextvars.ContextVar[Optional[Logger]] = contextvars.ContextVar(
    "current_logger", default=None
)


def attach_to_context(ctx: Optional[Mapping[Any, Any]], log: Logger) -> dict:
    """
    Return a copy of `ctx` with `log` attached to it.

    `ctx` itself is left unchanged.
    """
    derived = dict(ctx) if ctx else {}
    derived[_KEY] = log
    return derived


def bind_to_scope(scope: MutableMapping[Any, Any], log: Logger) -> None:
    """
    Attach `log` to an ASGI scope in place.

    Starlette hands the same scope dict to every downstream app, so this is
    how a middleware makes its logger visible to the endpoint.
    """
    scope[_KEY] = log


def from_context(ctx: Optional[Mapping[Any, Any]]) -> Logger:
    """
    Return the Logger attached to `ctx`.

    If there is no Logger attached, a new Logger instance is returned.
    """
    log = ctx.get(_KEY) if ctx else None
    if isinstance(log, Logger):
        return log
    return Logger()


def from_request(request) -> Logger:
    """Return the Logger the request middleware attached to `request`."""
    return from_context(request.scope)


def set_current_logger(log: Logger) -> contextvars.Token:
    """
    Make `log` the ambient logger for the current context.

    The setting is scoped to the current async task (or thread), so
    concurrent requests don't interfere with each other. Pass the returned
    token to reset_current_logger() in a finally block.
    """
    return current_logger_ctx.set(log)


def reset_current_logger(token: contextvars.Token) -> None:
    """Restore the ambient logger that was current before set_current_logger()."""
    current_logger_ctx.reset(token)


def current_logger() -> Logger:
    """Return the ambient logger, or a new Logger if none has been set."""
    log = current_logger_ctx.get()
    if log is None:
        return Logger()
    return log
