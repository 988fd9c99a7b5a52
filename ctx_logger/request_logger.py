"""
Request Logging Middleware

Starlette middleware that gives every request its own Logger and logs the
outcome of the request.

For each request it:
- generates a request id (UUID4) and attaches it to a Logger derived from
  the middleware's base logger
- adds method, route, path, ip_address, trace_id, referer and user_agent as
  top-level fields
- makes that Logger available to handlers via from_request(request) and
  current_logger()
- logs "handled request" with status_code and response_time (ms) once the
  response is ready

Usage:
    from ctx_logger import RequestLoggingMiddleware, from_request

    app.add_middleware(
        RequestLoggingMiddleware,
        is_ignorable_error=lambda err: isinstance(err, NotFound),
    )

    async def show_widget(request):
        log = from_request(request)
        log.info("loading widget", {"widget_id": request.path_params["id"]})

Errors raised by the application are never swallowed:
- An ignorable error is logged at warn level and re-raised untouched.
- Any other error is logged as "handled request" with the error attached.
  If the application registered a handler for 500 or Exception (and is not
  in debug mode), that handler builds the response, as Starlette's
  ServerErrorMiddleware would. Otherwise the request is logged with status
  500 and the error is re-raised, so ServerErrorMiddleware answers (its
  debug page in debug mode) and the server logs the traceback.

Only errors that escape the application reach is_ignorable_error. Starlette
answers HTTPException (including the 404 for an unmatched route) and
exceptions with a class-specific handler inside the application, so those
arrive here as ordinary responses and are logged with their status code.
To treat "not found" as ignorable, raise your own exception type (without a
registered handler) and match it in the predicate.
"""
import time
import uuid
import inspect

from typing import Callable, Optional
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Match

from .context import bind_to_scope, reset_current_logger, set_current_logger
from .logger import Logger

TRACE_ID_HEADER = "x-amzn-trace-id"


# =============================================================================
# Helper Functions
# =============================================================================

def _never_ignorable(err: Exception) -> bool:
    return False


def _get_client_ip(request: Request) -> str:
    """
    Extract client IP from request.

    Uses the last X-Forwarded-For entry (the one added by our own proxy),
    falling back to the peer address.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[-1].strip()
    return request.client.host if request.client else ""


def _get_route_pattern(request: Request) -> str:
    """Path template of the route that will handle the request ("" if none)."""
    app = request.scope.get("app")
    for route in getattr(app, "routes", None) or []:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", "")
    return ""


def _get_error_handler(request: Request) -> Optional[Callable]:
    """
    The handler Starlette's ServerErrorMiddleware would use for `request`.

    Starlette picks the handler registered for 500 or Exception; in debug
    mode it ignores it and renders its debug response instead.
    """
    app = request.scope.get("app")
    if getattr(app, "debug", False):
        return None

    error_handler = None
    for key, value in (getattr(app, "exception_handlers", None) or {}).items():
        if key in (500, Exception):
            error_handler = value
    return error_handler


async def _call_error_handler(handler: Callable, request: Request, exc: Exception) -> Response:
    if inspect.iscoroutinefunction(handler):
        return await handler(request, exc)
    return await run_in_threadpool(handler, request, exc)


# =============================================================================
# Middleware
# =============================================================================

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for request-scoped logging.

    Args:
        app: The ASGI application
        is_ignorable_error: Predicate deciding whether an error raised by the
                            application is ignorable. Ignorable errors are
                            logged at warn level and re-raised untouched.
                            Default: no error is ignorable.

    Example:
        app.add_middleware(
            RequestLoggingMiddleware,
            is_ignorable_error=lambda err: isinstance(err, NotFound),
        )
    """

    def __init__(
        self,
        app,
        is_ignorable_error: Optional[Callable[[Exception], bool]] = None,
    ):
        super().__init__(app)
        self.is_ignorable_error = is_ignorable_error or _never_ignorable
        self.logger = Logger()

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()

        # A failure here surfaces as a request failure
        request_id = str(uuid.uuid4())

        log = self.logger.with_id(request_id).with_root({
            "method": request.method,
            "route": _get_route_pattern(request),
            "path": request.url.path,
            "ip_address": _get_client_ip(request),
            "trace_id": request.headers.get(TRACE_ID_HEADER, ""),
            "referer": request.headers.get("referer", ""),
            "user_agent": request.headers.get("user-agent", ""),
        })

        bind_to_scope(request.scope, log)
        token = set_current_logger(log)

        try:
            try:
                response = await call_next(request)
            except Exception as exc:
                if self.is_ignorable_error(exc):
                    log.with_error(exc).warn("ignored error")
                    raise

                log = log.with_error(exc)
                handler = _get_error_handler(request)
                if handler is None:
                    # ServerErrorMiddleware answers with a 500 and re-raises
                    # to the server
                    self._log_handled(log, start_time, 500)
                    raise

                response = await _call_error_handler(handler, request, exc)

            self._log_handled(log, start_time, response.status_code)
            return response
        finally:
            reset_current_logger(token)

    @staticmethod
    def _log_handled(log: Logger, start_time: float, status_code: int) -> None:
        duration_ms = (time.perf_counter() - start_time) * 1000

        log.with_root({
            "status_code": status_code,
            "response_time": duration_ms,
        }).info("handled request")
