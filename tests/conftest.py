"""Shared fixtures for the calcblocks test suite."""

from __future__ import annotations

import pytest

from calcblocks.logging.events import set_sink


@pytest.fixture(autouse=True)
def _no_event_sink():
    """Start and end every test with event logging disabled."""
    set_sink(None)
    yield
    set_sink(None)


class RecordingSink:
    """In-memory stand-in for ``EventSink`` that keeps every event."""

    def __init__(self) -> None:
        self.events = []

    def write(self, event) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list:
        return [e for e in self.events if e.event_type == event_type]


@pytest.fixture
def recorder() -> RecordingSink:
    sink = RecordingSink()
    set_sink(sink)
    return sink
