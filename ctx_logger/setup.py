"""
Sink plumbing using Loguru

Every Logger writes through the global loguru logger. Each distinct sink gets
one loguru handler, owned by a SinkHandle shared by every Logger built on
that sink, and records are routed to it by a key bound into the record's
extra dict. The handler renders the event as one JSON line:

    {"timestamp": "...", "host": "...", "release": "...", <root fields>,
     "id": "...", "data": {...}, "error": {"message": "...", "stack": "..."},
     "nanoseconds": 1700000000000000000, "message": "...", "level": "info"}

Handler lifecycle:
- The handler is added when the first Logger on a sink is built and removed
  once no Logger on that sink is left.
- If the handler disappears behind our back (e.g. the application calls
  loguru's logger.remove()), the next emission re-adds it and writes the
  event again, so no output is silently dropped.

Loguru serializes writes per handler with its own lock, so a sink shared by
concurrent requests receives whole lines. Handlers are added with catch=True:
a sink that fails to write is reported by loguru on stderr and never raises
into the caller.

Environment variables:
    RELEASE: release/version tag added to every event (omitted if unset)
"""
import os
import sys
import json
import socket
import weakref
import itertools
import threading
from datetime import timezone

from loguru import logger as _loguru_logger

TIMESTAMP_FIELD = "timestamp"

# Keys bound into record["extra"]
SINK_KEY = "ctx_logger_sink"
EVENT_KEY = "ctx_logger_event"
RECEIPT_KEY = "ctx_logger_receipt"

STDOUT_KEY = "stdout"

# Level method name -> loguru level
LEVELS = {
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "error": "ERROR",
    "fatal": "CRITICAL",
}

# loguru level -> rendered level
LEVEL_NAMES = {v: k for k, v in LEVELS.items()}

# Module-level registry: id(sink) -> SinkHandle, alive while any Logger uses it
_sinks: "weakref.WeakValueDictionary" = weakref.WeakValueDictionary()
_sinks_lock = threading.Lock()
_sink_counter = itertools.count(1)
_configured = False


def get_host() -> str:
    """Host name of the operating environment."""
    return socket.gethostname()


def get_release() -> str:
    """Release tag from the RELEASE environment variable ("" if unset)."""
    return os.getenv("RELEASE", "")


def _build_log_dict(record) -> dict:
    """Build the rendered event from a loguru record."""
    timestamp = record["time"].astimezone(timezone.utc).isoformat()
    log_dict = {TIMESTAMP_FIELD: timestamp}
    log_dict.update(record["extra"].get(EVENT_KEY, {}))
    # Schema fields win over root fields of the same name
    log_dict[TIMESTAMP_FIELD] = timestamp
    log_dict["message"] = record["message"]
    log_dict["level"] = LEVEL_NAMES.get(record["level"].name, record["level"].name.lower())
    return log_dict


class JsonSink:
    """
    Loguru sink that writes one JSON object per line to a text stream.

    A stream of None means standard output, looked up on every write so a
    replaced sys.stdout (e.g. under a test runner) is honored.
    """

    def __init__(self, stream=None):
        self.stream = stream

    def __call__(self, message) -> None:
        record = message.record
        receipt = record["extra"].get(RECEIPT_KEY)
        if receipt is not None:
            receipt.append(True)

        stream = self.stream if self.stream is not None else sys.stdout
        log_dict = _build_log_dict(record)
        stream.write(json.dumps(log_dict, ensure_ascii=False, default=str) + "\n")
        self.flush()

    def flush(self) -> None:
        stream = self.stream if self.stream is not None else sys.stdout
        flush = getattr(stream, "flush", None)
        if flush is not None:
            flush()


def _configure() -> None:
    """Take ownership of loguru's handlers (drops the default stderr handler)."""
    global _configured
    if not _configured:
        _loguru_logger.remove()
        _configured = True


def _remove_handlers(handler_ids: list) -> None:
    for handler_id in handler_ids:
        try:
            _loguru_logger.remove(handler_id)
        except ValueError:
            # Already removed by the application
            pass


class SinkHandle:
    """
    Owns the loguru handler for one sink.

    Loggers built on the same sink share one handle. When the last of them is
    garbage collected, the handle goes too and its handler is removed.
    """

    def __init__(self, sink=None):
        self.sink = sink
        self.json_sink = JsonSink(sink)
        self.key = STDOUT_KEY if sink is None else f"sink-{next(_sink_counter)}"
        self.handler_id = None
        self._handler_ids: list = []
        self._lock = threading.Lock()
        self._emitter = _loguru_logger.bind(**{SINK_KEY: self.key})
        self._attach(None)
        weakref.finalize(self, _remove_handlers, self._handler_ids)

    def _attach(self, stale_id) -> None:
        """Add the handler, unless another thread already replaced `stale_id`."""
        with self._lock:
            if self.handler_id != stale_id:
                return
            key = self.key
            self.handler_id = _loguru_logger.add(
                self.json_sink,
                level="DEBUG",
                format="{message}",
                filter=lambda record: record["extra"].get(SINK_KEY) == key,
                colorize=False,
                enqueue=False,
                catch=True,
            )
            self._handler_ids.append(self.handler_id)

    def emit(self, level: str, message: str, event: dict) -> None:
        """Write one event at `level` (a loguru level name)."""
        handler_id = self.handler_id
        receipt: list = []
        self._emitter.bind(**{EVENT_KEY: event, RECEIPT_KEY: receipt}).log(level, message)

        if not receipt:
            # Our handler is gone; put it back and write the event again
            self._attach(handler_id)
            self._emitter.bind(**{EVENT_KEY: event}).log(level, message)

    def complete(self) -> None:
        """Flush the sink."""
        _loguru_logger.complete()
        self.json_sink.flush()


def register_sink(sink=None) -> SinkHandle:
    """
    Return the SinkHandle for `sink`.

    The same handle is returned for as long as any Logger holds it, so
    creating many Loggers on the same stream never duplicates output.

    Args:
        sink: Text stream with a write(str) method, or None for stdout.
    """
    ident = STDOUT_KEY if sink is None else id(sink)

    with _sinks_lock:
        handle = _sinks.get(ident)
        if handle is None:
            _configure()
            handle = SinkHandle(sink)
            _sinks[ident] = handle

    return handle
