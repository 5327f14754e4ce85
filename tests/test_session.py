"""Tests for the reactive calculator session and its block views."""

from __future__ import annotations

import polars as pl
import pytest

from calcblocks.blocks import (
    CalculatorConfig,
    ChartBlock,
    ComparisonBlock,
    ComparisonRow,
    InputBlock,
    ResultBlock,
    SliderBlock,
    TextBlock,
)
from calcblocks.project import Settings
from calcblocks.session import CalculatorSession, ChartView, ComparisonView, ResultView
from calcblocks.variables import VariableStore


def _config() -> CalculatorConfig:
    return CalculatorConfig(
        id="calc1",
        blocks=[
            TextBlock(id="title", order=0, content="Savings", size="h1"),
            InputBlock(id="hours", order=1, variable_name="hours", default_value=10),
            SliderBlock(id="rate", order=2, variable_name="rate", default_value=50),
            ResultBlock(id="total", order=3, formula="{hours} * {rate}", format="currency"),
        ],
    )


@pytest.fixture
def session() -> CalculatorSession:
    return CalculatorSession(_config())


# ────────────────────────────────────────────────────────────────
# Rendering
# ────────────────────────────────────────────────────────────────


class TestRender:
    def test_seeds_store_from_defaults(self, session: CalculatorSession) -> None:
        assert dict(session.values()) == {"hours": 10.0, "rate": 50.0}

    def test_views_in_block_order(self, session: CalculatorSession) -> None:
        frame = session.render()
        assert [v.kind for v in frame.views] == ["text", "input", "slider", "result"]

    def test_result_view(self, session: CalculatorSession) -> None:
        view = session.render().find("total")
        assert isinstance(view, ResultView)
        assert view.value == 500
        assert view.valid
        assert view.display == "500 €"

    def test_variable_view(self, session: CalculatorSession) -> None:
        view = session.render().find("rate")
        assert view.value == 50
        assert view.step == 1
        assert session.render().find("hours").step is None

    def test_invalid_formula_renders_zero(self) -> None:
        config = CalculatorConfig(blocks=[ResultBlock(id="bad", formula="window.alert(1)")])
        view = CalculatorSession(config).render().find("bad")
        assert view.value == 0
        assert not view.valid
        assert view.display == "0"

    def test_positive_percent_gets_plus(self) -> None:
        config = CalculatorConfig(blocks=[
            ResultBlock(id="up", formula="12", format="percent"),
            ResultBlock(id="down", formula="-12", format="percent"),
            ResultBlock(id="zero", formula="0", format="percent"),
        ])
        frame = CalculatorSession(config).render()
        assert frame.find("up").display == "+12%"
        assert frame.find("down").display == "-12%"
        assert frame.find("zero").display == "0%"

    def test_settings_locale(self) -> None:
        settings = Settings(locale="en-US", currency="USD")
        config = CalculatorConfig(blocks=[ResultBlock(id="r", formula="1234.5", format="currency")])
        view = CalculatorSession(config, settings=settings).render().find("r")
        assert view.display == "$1,235"

    def test_frame_version(self, session: CalculatorSession) -> None:
        before = session.render().version
        session.set_variable("hours", 11)
        assert session.render().version == before + 1

    def test_config_copied(self) -> None:
        config = _config()
        session = CalculatorSession(config)
        session.remove_block("title")
        assert len(config.blocks) == 4

    def test_shared_store(self) -> None:
        store = VariableStore({"stale": 1})
        session = CalculatorSession(_config(), store=store)
        assert "stale" not in store
        store.set("hours", 2)
        assert session.render().find("total").value == 100

    def test_session_evaluate(self, session: CalculatorSession) -> None:
        assert session.evaluate("{hours} + {rate}") == 60


class TestChart:
    def _render(self, data_formula: str, **values: float) -> ChartView:
        config = CalculatorConfig(blocks=[ChartBlock(id="c", data_formula=data_formula)])
        session = CalculatorSession(config)
        if values:
            session.set_variables(values)
        return session.render().find("c")

    def test_before_after_series(self) -> None:
        view = self._render("{a}:{b}", a=100, b=250.5)
        assert len(view.points) == 12
        assert view.points[0].label == "Jan"
        assert (view.points[0].before, view.points[0].after) == (100, 251)
        assert (view.points[11].before, view.points[11].after) == (1200, 3006)

    def test_after_only_uses_before_fallback(self) -> None:
        view = self._render("{b}", b=10)
        assert view.before_value == 1000
        assert view.after_value == 10

    def test_zero_results_fall_back(self) -> None:
        view = self._render("")
        assert (view.before_value, view.after_value) == (1000, 2500)
        view = self._render("{missing}:0")
        assert (view.before_value, view.after_value) == (1000, 2500)

    def test_huge_values_do_not_overflow(self) -> None:
        view = self._render("{a}:{a}", a=1e308)
        assert view.points[-1].after == 0

    def test_values_beyond_int64_display_zero(self) -> None:
        view = self._render("{a}:{a}", a=1e18)
        assert view.points[8].after == 9 * 10**18
        assert view.points[9].after == 0
        frame = view.to_frame()
        assert frame.height == 12
        assert frame["after"].to_list()[9:] == [0, 0, 0]

    def test_to_frame(self) -> None:
        frame = self._render("{a}:{b}", a=1, b=2).to_frame()
        assert isinstance(frame, pl.DataFrame)
        assert frame.columns == ["label", "before", "after"]
        assert frame.height == 12
        assert frame["after"].to_list()[-1] == 24

    def test_custom_labels(self) -> None:
        settings = Settings(chart_labels=["Q1", "Q2"])
        config = CalculatorConfig(blocks=[ChartBlock(id="c", data_formula="5")])
        view = CalculatorSession(config, settings=settings).render().find("c")
        assert [p.label for p in view.points] == ["Q1", "Q2"]
        assert [p.after for p in view.points] == [5, 10]


class TestComparison:
    def _view(self) -> ComparisonView:
        config = CalculatorConfig(blocks=[
            InputBlock(id="i", variable_name="cost", default_value=200),
            ComparisonBlock(id="cmp", rows=[
                ComparisonRow(id="r1", label="Cost", before_formula="{cost}",
                              after_formula="{cost} / 2", format="currency"),
                ComparisonRow(id="r2", label="Output", before_formula="10",
                              after_formula="25"),
                ComparisonRow(id="r3", label="Mode", before_formula="manual",
                              after_formula="automatic", format="text"),
            ]),
        ])
        return CalculatorSession(config).render().find("cmp")

    def test_numeric_rows(self) -> None:
        cost, output, _ = self._view().rows
        assert (cost.before, cost.after) == (200, 100)
        assert cost.after_display == "100 €"
        assert not cost.is_better
        assert output.is_better

    def test_text_row_shows_raw_strings(self) -> None:
        mode = self._view().rows[2]
        assert mode.before is None
        assert (mode.before_display, mode.after_display) == ("manual", "automatic")
        assert not mode.is_better

    def test_to_frame(self) -> None:
        frame = self._view().to_frame()
        assert frame.height == 3
        assert frame["is_better"].to_list() == [False, True, False]
        assert frame["before"].to_list()[2] is None


# ────────────────────────────────────────────────────────────────
# Reactivity
# ────────────────────────────────────────────────────────────────


class TestReactivity:
    def test_set_variable_rerenders(self, session: CalculatorSession) -> None:
        frames = []
        session.on_change(frames.append)
        session.set_variable("hours", 20)
        assert len(frames) == 1
        assert frames[0].find("total").value == 1000

    def test_unrelated_variable_still_rerenders(self, session: CalculatorSession) -> None:
        frames = []
        session.on_change(frames.append)
        session.set_variable("unused", 1)
        assert len(frames) == 1

    def test_remove_listener(self, session: CalculatorSession) -> None:
        frames = []
        remove = session.on_change(frames.append)
        remove()
        session.set_variable("hours", 20)
        assert frames == []

    def test_close_detaches(self, session: CalculatorSession) -> None:
        frames = []
        session.on_change(frames.append)
        session.close()
        session.set_variable("hours", 20)
        assert frames == []

    def test_failing_listener_logged(self, session: CalculatorSession, recorder) -> None:
        frames = []

        def boom(frame):
            raise RuntimeError("boom")

        session.on_change(boom)
        session.on_change(frames.append)
        session.set_variable("hours", 1)
        assert len(frames) == 1
        assert len(recorder.of_type("view_listener_error")) == 1


# ────────────────────────────────────────────────────────────────
# Block lifecycle
# ────────────────────────────────────────────────────────────────


class TestLifecycle:
    def test_add_input_creates_variable(self, session: CalculatorSession) -> None:
        session.add_block(InputBlock(id="extra", variable_name="extra", default_value=7))
        assert session.store.get("extra") == 7
        assert [b.order for b in session.config.ordered_blocks()] == [0, 1, 2, 3, 4]

    def test_add_at_index(self, session: CalculatorSession) -> None:
        session.add_block(TextBlock(id="intro"), at_index=0)
        assert session.config.ordered_blocks()[0].id == "intro"
        assert session.config.find_block("title").order == 1

    def test_add_publishes(self, session: CalculatorSession) -> None:
        frames = []
        session.on_change(frames.append)
        session.add_block(ResultBlock(id="r2", formula="{rate} * 2"))
        assert frames[-1].find("r2").value == 100

    def test_add_duplicate_variable(self, session: CalculatorSession) -> None:
        with pytest.raises(ValueError, match="already used"):
            session.add_block(SliderBlock(variable_name="hours"))

    def test_add_duplicate_id(self, session: CalculatorSession) -> None:
        with pytest.raises(ValueError, match="Duplicate block id"):
            session.add_block(TextBlock(id="title"))

    def test_rename_carries_live_value(self, session: CalculatorSession) -> None:
        session.set_variable("hours", 33)
        version = session.store.version
        session.update_block("hours", variable_name="work_hours")
        assert "hours" not in session.store
        assert session.store.get("work_hours") == 33
        assert session.store.version == version + 1

    def test_rename_to_taken_name(self, session: CalculatorSession) -> None:
        with pytest.raises(ValueError, match="already used"):
            session.update_block("hours", variable_name="rate")
        assert session.config.find_block("hours").variable_name == "hours"

    def test_default_value_change_sets_variable(self, session: CalculatorSession) -> None:
        session.update_block("rate", default_value=75)
        assert session.store.get("rate") == 75
        assert session.render().find("total").value == 750

    def test_update_formula(self, session: CalculatorSession) -> None:
        frames = []
        session.on_change(frames.append)
        session.update_block("total", formula="{hours} + {rate}", format="number")
        assert frames[-1].find("total").display == "60"

    def test_update_invalid(self, session: CalculatorSession) -> None:
        with pytest.raises(ValueError):
            session.update_block("total", format="date")
        with pytest.raises(ValueError):
            session.update_block("total", type="text")

    def test_update_unknown_block(self, session: CalculatorSession) -> None:
        with pytest.raises(KeyError):
            session.update_block("nope", label="x")

    def test_remove_input_deletes_variable(self, session: CalculatorSession) -> None:
        session.remove_block("hours")
        assert "hours" not in session.store
        view = session.render().find("total")
        assert view.value == 0
        assert [b.order for b in session.config.ordered_blocks()] == [0, 1, 2]

    def test_remove_unknown(self, session: CalculatorSession) -> None:
        with pytest.raises(KeyError):
            session.remove_block("nope")
