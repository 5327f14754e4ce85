"""Tests for the calcblocks structured event logging system."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from calcblocks.logging.events import (
    CalcEvent,
    EventLevel,
    EventType,
    emit,
    emit_error,
    emit_info,
    emit_warning,
    get_sink,
    set_project_dir,
    set_sink,
    truncate_context,
)
from calcblocks.logging.sink import EventSink


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture
def sink(project_dir: Path) -> EventSink:
    return EventSink(project_dir)


def _read_global(project_dir: Path) -> list[dict]:
    path = project_dir / "logs" / "events.ndjson"
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


# ---------------------------------------------------------------------------
# Event schema
# ---------------------------------------------------------------------------


class TestCalcEvent:
    def test_event_defaults(self) -> None:
        evt = CalcEvent(
            level=EventLevel.info,
            event_type=EventType.variable_set,
            message="hello",
        )
        assert evt.schema_version == 1
        assert evt.ts.endswith("Z")
        assert evt.level == "info"
        assert evt.event_type == "variable_set"
        assert evt.context == {}
        assert evt.error_code is None

    def test_event_with_error_code(self) -> None:
        evt = CalcEvent(
            level=EventLevel.warning,
            event_type=EventType.formula_rejected,
            message="rejected",
            error_code="unsafe_expression",
            context={"formula": "window"},
        )
        data = evt.model_dump(mode="json")
        assert data["error_code"] == "unsafe_expression"
        assert data["context"]["formula"] == "window"

    def test_truncate_context(self) -> None:
        ctx = truncate_context({"formula": "x" * 1000, "nested": {"v": "y" * 300}, "n": 5})
        assert ctx["formula"].endswith("...[truncated]")
        assert len(ctx["formula"]) == 256 + len("...[truncated]")
        assert ctx["nested"]["v"].endswith("...[truncated]")
        assert ctx["n"] == 5


# ---------------------------------------------------------------------------
# Sink
# ---------------------------------------------------------------------------


class TestEventSink:
    def test_creates_directories(self, sink: EventSink, project_dir: Path) -> None:
        assert (project_dir / "logs").is_dir()
        assert (project_dir / "logs" / "calculators").is_dir()

    def test_write_global(self, sink: EventSink, project_dir: Path) -> None:
        sink.write(CalcEvent(level=EventLevel.info, event_type=EventType.variable_set, message="a"))
        events = _read_global(project_dir)
        assert len(events) == 1
        assert events[0]["event_type"] == "variable_set"

    def test_write_calculator_log(self, sink: EventSink, project_dir: Path) -> None:
        sink.write(CalcEvent(
            level=EventLevel.warning,
            event_type=EventType.formula_rejected,
            context={"calculator_id": "calc_1"},
        ))
        assert (project_dir / "logs" / "calculators" / "calc_1.ndjson").exists()
        assert len(sink.read_calculator_log("calc_1")) == 1

    def test_unsafe_calculator_id_not_used_as_path(self, sink: EventSink, project_dir: Path) -> None:
        sink.write(CalcEvent(
            level=EventLevel.info,
            event_type=EventType.variable_set,
            context={"calculator_id": "../escape"},
        ))
        assert list((project_dir / "logs" / "calculators").iterdir()) == []
        assert sink.read_calculator_log("../escape") == []

    def test_read_events_filters_most_recent_first(self, sink: EventSink) -> None:
        sink.write(CalcEvent(level=EventLevel.info, event_type=EventType.variable_set, message="1"))
        sink.write(CalcEvent(level=EventLevel.warning, event_type=EventType.formula_rejected, message="2"))
        sink.write(CalcEvent(level=EventLevel.info, event_type=EventType.variable_set, message="3"))

        assert [e["message"] for e in sink.read_events()] == ["3", "2", "1"]
        assert [e["message"] for e in sink.read_events(level="warning")] == ["2"]
        assert [e["message"] for e in sink.read_events(event_type="variable_set")] == ["3", "1"]
        assert len(sink.read_events(limit=1)) == 1

    def test_read_events_by_calculator(self, sink: EventSink) -> None:
        sink.write(CalcEvent(level=EventLevel.info, event_type=EventType.session_rendered,
                             context={"calculator_id": "a"}))
        sink.write(CalcEvent(level=EventLevel.info, event_type=EventType.session_rendered,
                             context={"calculator_id": "b"}))
        assert len(sink.read_events(calculator_id="a")) == 1

    def test_skips_corrupt_lines(self, sink: EventSink, project_dir: Path) -> None:
        path = project_dir / "logs" / "events.ndjson"
        path.write_text('{"message": "ok"}\nnot json\n\n')
        assert sink.read_events() == [{"message": "ok"}]

    def test_trim_global_log(self, sink: EventSink, project_dir: Path) -> None:
        for i in range(20):
            sink.write(CalcEvent(level=EventLevel.info, event_type=EventType.variable_set, message=str(i)))
        path = project_dir / "logs" / "events.ndjson"
        size = path.stat().st_size
        dropped = sink.trim_global_log(size // 2)
        assert dropped > 0
        assert path.stat().st_size <= size // 2
        assert sink.read_events(limit=1)[0]["message"] == "19"

    def test_trim_noop_when_small(self, sink: EventSink) -> None:
        assert sink.trim_global_log(10_000) == 0

    def test_tail_read(self, project_dir: Path) -> None:
        sink = EventSink(project_dir, tail_bytes=400)
        for i in range(50):
            sink.write(CalcEvent(level=EventLevel.info, event_type=EventType.variable_set, message=str(i)))
        events = sink.read_events(limit=2000)
        assert 0 < len(events) < 50
        assert events[0]["message"] == "49"


# ---------------------------------------------------------------------------
# Module-level emit helpers
# ---------------------------------------------------------------------------


class TestEmit:
    def test_no_sink_discards(self) -> None:
        assert get_sink() is None
        emit_info(EventType.variable_set, "nothing happens")

    def test_helpers_set_level(self, recorder) -> None:
        emit_info(EventType.variable_set, "i")
        emit_warning(EventType.formula_rejected, "w", error_code="unsafe_expression")
        emit_error(EventType.view_listener_error, "e", error_code="listener_failed")
        assert [e.level for e in recorder.events] == ["info", "warning", "error"]
        assert recorder.events[1].error_code == "unsafe_expression"

    def test_emit_truncates(self, recorder) -> None:
        emit(CalcEvent(
            level=EventLevel.info,
            event_type=EventType.variable_set,
            context={"formula": "z" * 500},
        ))
        assert recorder.events[0].context["formula"].endswith("...[truncated]")

    def test_broken_sink_never_raises(self) -> None:
        class Broken:
            def write(self, event):
                raise OSError("disk full")

        set_sink(Broken())
        emit_warning(EventType.formula_rejected, "still fine")


class TestSetProjectDir:
    def test_configures_sink(self, project_dir: Path) -> None:
        set_project_dir(project_dir)
        assert isinstance(get_sink(), EventSink)
        emit_info(EventType.variable_set, "hello")
        assert _read_global(project_dir)[0]["message"] == "hello"

    def test_logging_disabled(self, project_dir: Path) -> None:
        (project_dir / "calcblocks.yaml").write_text("logging_enabled: false\n")
        set_project_dir(project_dir)
        assert get_sink() is None

    def test_max_bytes_trims(self, project_dir: Path) -> None:
        sink = EventSink(project_dir)
        for i in range(50):
            sink.write(CalcEvent(level=EventLevel.info, event_type=EventType.variable_set, message=str(i)))
        (project_dir / "calcblocks.yaml").write_text("logging_max_bytes: 1000\n")
        set_project_dir(project_dir)
        assert (project_dir / "logs" / "events.ndjson").stat().st_size <= 1000


# ---------------------------------------------------------------------------
# Events emitted by the engine
# ---------------------------------------------------------------------------


class TestEngineEvents:
    def test_unknown_variable(self, recorder) -> None:
        from calcblocks.formulas import Evaluator

        Evaluator(context={"calculator_id": "c1"}).evaluate("{missing} + 1", {})
        events = recorder.of_type("formula_unknown_variable")
        assert len(events) == 1
        assert events[0].context["variable"] == "missing"
        assert events[0].context["calculator_id"] == "c1"
        assert events[0].error_code == "unknown_variable"

    def test_rejected(self, recorder) -> None:
        from calcblocks.formulas import evaluate

        evaluate("window.location", {})
        assert recorder.of_type("formula_rejected")[0].error_code == "unsafe_expression"

    def test_non_finite_result(self, recorder) -> None:
        from calcblocks.formulas import evaluate

        evaluate("1 / 0", {})
        assert len(recorder.of_type("formula_non_finite_result")) == 1

    def test_non_finite_variable(self, recorder) -> None:
        from calcblocks.formulas import evaluate

        evaluate("{a}", {"a": float("nan")})
        assert len(recorder.of_type("formula_non_finite_variable")) == 1

    def test_store_events(self, recorder) -> None:
        from calcblocks.variables import VariableStore

        store = VariableStore()
        store.set("a", 1)
        store.rename("a", "b")
        store.delete("b")
        kinds = [e.event_type for e in recorder.events]
        assert kinds == ["variable_set", "variable_renamed", "variable_deleted"]
