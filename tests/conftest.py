"""Shared fixtures for ctx_logger tests."""
import io
import json

import pytest


def read_events(text: str) -> list:
    """Parse the JSON lines written by a sink."""
    return [json.loads(line) for line in text.splitlines() if line.startswith("{")]


@pytest.fixture
def sink():
    """In-memory text stream for a Logger to write to."""
    return io.StringIO()


@pytest.fixture
def events(sink):
    """Callable returning the events written to `sink` so far."""
    return lambda: read_events(sink.getvalue())


@pytest.fixture
def no_release(monkeypatch):
    """Make sure RELEASE is unset while loggers are built."""
    monkeypatch.delenv("RELEASE", raising=False)


@pytest.fixture
def fresh_default_logger(monkeypatch):
    """Drop the process-wide default logger so the test builds its own."""
    from ctx_logger import instances

    monkeypatch.setattr(instances, "_default_logger", None)
