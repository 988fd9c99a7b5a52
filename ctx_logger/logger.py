"""
Immutable structured logger

A Logger is a value: with_id, with_error, with_data and with_root return a
modified copy and never touch the receiver. A base logger can be shared by
any number of concurrent requests, each deriving its own variant.

Usage:
    from ctx_logger import Logger

    log = Logger().with_root({"service": "billing"}).with_data({"user_id": 7})
    log.info("invoice created", {"invoice_id": 42})

    try:
        charge()
    except PaymentError as exc:
        log.with_error(exc).error("charge failed")

Fields passed to with_root are flattened at the top level of every event.
Fields passed to with_data (or at the call site) are nested under "data".
"""
import os
import sys
import copy
import time
import threading
import traceback
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable

from .setup import LEVELS, get_host, get_release, register_sink

Data = Dict[str, Any]

STACK_SIZE = 4 << 10  # 4KB

_EMPTY: Mapping[str, Any] = MappingProxyType({})


@runtime_checkable
class StackTracer(Protocol):
    """Errors that carry their own stack trace."""

    def stack_trace(self) -> str:
        ...


class TracedError(Exception):
    """
    Exception that records the stack where it was created.

    Useful for errors that are built and passed around (or attached to a
    logger) without ever being raised.
    """

    def __init__(self, *args):
        super().__init__(*args)
        self._stack = "".join(traceback.format_stack()[:-1])

    def stack_trace(self) -> str:
        return self._stack


def _merge(base: Mapping[str, Any], fields: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    """Shallow, right-biased merge into a new read-only mapping."""
    merged = dict(base)
    if fields:
        merged.update(fields)
    return MappingProxyType(merged)


def _stack_for(err: BaseException) -> str:
    if isinstance(err, StackTracer):
        return str(err.stack_trace())
    if err.__traceback__ is not None:
        return "".join(traceback.format_exception(type(err), err, err.__traceback__))
    # No traceback to report: snapshot the stack at the point of rendering
    stack = "".join(traceback.format_stack())
    return stack[-STACK_SIZE:]


class Logger:
    """
    Immutable structured logger.

    Args:
        sink: Text stream events are written to (anything with write(str)).
              None writes to standard output.
    """

    def __init__(self, sink=None):
        self._sink = sink
        self._handle = register_sink(sink)
        self._host = get_host()
        self._release = get_release()
        self._id = ""
        self._err: Optional[BaseException] = None
        self._data: Mapping[str, Any] = _EMPTY
        self._root: Mapping[str, Any] = _EMPTY

    @property
    def sink(self):
        return self._sink

    @property
    def host(self) -> str:
        return self._host

    @property
    def release(self) -> str:
        return self._release

    @property
    def id(self) -> str:
        return self._id

    @property
    def err(self) -> Optional[BaseException]:
        return self._err

    @property
    def data(self) -> Mapping[str, Any]:
        return self._data

    @property
    def root(self) -> Mapping[str, Any]:
        return self._root

    def _replace(self, **changes) -> "Logger":
        log = copy.copy(self)
        for name, value in changes.items():
            setattr(log, "_" + name, value)
        return log

    def with_id(self, id: str) -> "Logger":
        """Return a new Logger with the request id set to `id`."""
        return self._replace(id=id or "")

    def with_error(self, err: Optional[BaseException]) -> "Logger":
        """Return a new Logger with `err` attached (replacing any previous error)."""
        return self._replace(err=err)

    def with_data(self, fields: Mapping[str, Any]) -> "Logger":
        """Return a new Logger with `fields` merged into its nested data."""
        return self._replace(data=_merge(self._data, fields))

    def with_root(self, fields: Mapping[str, Any]) -> "Logger":
        """
        Return a new Logger with `fields` merged into its top-level fields.

        Schema fields (timestamp, host, release, id, data, error,
        nanoseconds, message, level) take precedence over root fields of the
        same name whenever the event renders them.
        """
        return self._replace(root=_merge(self._root, fields))

    def debug(self, message: str, *fields: Mapping[str, Any]) -> None:
        self._log("debug", message, fields)

    def info(self, message: str, *fields: Mapping[str, Any]) -> None:
        self._log("info", message, fields)

    def warn(self, message: str, *fields: Mapping[str, Any]) -> None:
        self._log("warn", message, fields)

    def error(self, message: str, *fields: Mapping[str, Any]) -> None:
        self._log("error", message, fields)

    def fatal(self, message: str, *fields: Mapping[str, Any]) -> None:
        """
        Write a fatal-level event, then terminate the process with status 1.

        In the main thread this raises SystemExit(1). From any other thread
        SystemExit would only end that thread, so the process is ended with
        os._exit(1) once the sink is flushed.
        """
        self._log("fatal", message, fields)
        if threading.current_thread() is threading.main_thread():
            sys.exit(1)
        self._handle.complete()
        sys.stdout.flush()
        sys.stderr.flush()
        os._exit(1)

    def render(self, *fields: Mapping[str, Any]) -> Data:
        """
        Build the event fields for one emission.

        Timestamp, message and level are added by the sink when the event is
        written.
        """
        has_data = bool(self._data) or any(fields)

        event: Data = {"host": self._host}
        if self._release:
            event["release"] = self._release

        event.update(self._root)
        # Schema fields win over root fields of the same name
        event["host"] = self._host
        if self._release:
            event["release"] = self._release

        if self._id:
            event["id"] = self._id

        if has_data:
            data = dict(self._data)
            for field in fields:
                if field:
                    data.update(field)
            event["data"] = data

        if self._err is not None:
            event["error"] = {
                "message": str(self._err),
                "stack": _stack_for(self._err),
            }

        event["nanoseconds"] = time.time_ns()
        return event

    def _log(self, level: str, message: str, fields) -> None:
        event = self.render(*fields)
        self._handle.emit(LEVELS[level], message, event)

    def __repr__(self) -> str:
        return f"Logger(id={self._id!r}, root={dict(self._root)!r}, data={dict(self._data)!r})"
