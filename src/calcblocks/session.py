"""Reactive calculator session.

A :class:`CalculatorSession` binds a calculator config to a
:class:`~calcblocks.variables.VariableStore` and an
:class:`~calcblocks.formulas.Evaluator`.  Every store mutation triggers a
full re-render: each result, chart and comparison block is evaluated
against the entire current snapshot, whether or not its formula uses
the variable that changed.  Formulas are short, so the redundant work is
negligible and there is no dependency cache to go stale.
"""

from __future__ import annotations

import math
from typing import Annotated, Any, Callable, Literal, Mapping, Union

import polars as pl
from pydantic import BaseModel, Field

from calcblocks.blocks import (
    Block,
    CalculatorConfig,
    ChartBlock,
    ComparisonBlock,
    ComparisonRow,
    InputBlock,
    ResultBlock,
    SliderBlock,
    TextBlock,
)
from calcblocks.formatting import format_number, format_value
from calcblocks.formulas.evaluator import EvaluationResult, Evaluator
from calcblocks.formulas.sanitizer import Sanitizer
from calcblocks.functions.builtin import fn_round
from calcblocks.logging.events import (
    LISTENER_FAILED,
    EventType,
    emit_info,
    emit_warning,
)
from calcblocks.project import Settings
from calcblocks.variables import VariableStore

# Chart series are Int64 columns
_INT64_LIMIT = 2.0**63

# ────────────────────────────────────────────────────────────────
# Views (what a renderer displays for each block)
# ────────────────────────────────────────────────────────────────


class TextView(BaseModel):
    kind: Literal["text"] = "text"
    block_id: str
    content: str
    size: str


class VariableView(BaseModel):
    kind: Literal["input", "slider"]
    block_id: str
    label: str
    variable_name: str
    value: float
    display: str
    suffix: str
    min: float
    max: float
    step: float | None = None


class ResultView(BaseModel):
    kind: Literal["result"] = "result"
    block_id: str
    label: str
    value: float
    valid: bool
    display: str
    format: str
    size: str
    color: str


class ChartPoint(BaseModel):
    label: str
    before: int
    after: int


class ChartView(BaseModel):
    kind: Literal["chart"] = "chart"
    block_id: str
    title: str
    chart_type: str
    before_label: str
    after_label: str
    before_value: float
    after_value: float
    points: list[ChartPoint]

    def to_frame(self) -> pl.DataFrame:
        """Chart series as a DataFrame with ``label``, ``before``, ``after``."""
        return pl.DataFrame(
            {
                "label": [p.label for p in self.points],
                "before": [p.before for p in self.points],
                "after": [p.after for p in self.points],
            },
            schema={"label": pl.Utf8, "before": pl.Int64, "after": pl.Int64},
        )


class ComparisonRowView(BaseModel):
    row_id: str
    label: str
    format: str
    before: float | None
    after: float | None
    before_display: str
    after_display: str
    is_better: bool


class ComparisonView(BaseModel):
    kind: Literal["comparison"] = "comparison"
    block_id: str
    title: str
    rows: list[ComparisonRowView]

    def to_frame(self) -> pl.DataFrame:
        """Comparison table as a DataFrame (one row per comparison row)."""
        return pl.DataFrame(
            {
                "label": [r.label for r in self.rows],
                "before": [r.before for r in self.rows],
                "after": [r.after for r in self.rows],
                "before_display": [r.before_display for r in self.rows],
                "after_display": [r.after_display for r in self.rows],
                "is_better": [r.is_better for r in self.rows],
            },
            schema={
                "label": pl.Utf8,
                "before": pl.Float64,
                "after": pl.Float64,
                "before_display": pl.Utf8,
                "after_display": pl.Utf8,
                "is_better": pl.Boolean,
            },
        )


BlockView = Annotated[
    Union[TextView, VariableView, ResultView, ChartView, ComparisonView],
    Field(discriminator="kind"),
]


class Frame(BaseModel):
    """All block views computed from one store version."""

    version: int
    views: list[BlockView]

    def find(self, block_id: str) -> BlockView | None:
        for view in self.views:
            if view.block_id == block_id:
                return view
        return None


ViewListener = Callable[[Frame], None]


# ────────────────────────────────────────────────────────────────
# Session
# ────────────────────────────────────────────────────────────────


class CalculatorSession:
    """Live calculator: variables, formulas and their rendered views.

    Usage::

        session = CalculatorSession(config)
        session.on_change(lambda frame: redraw(frame.views))
        session.set_variable("price", 120)   # redraw() receives a new frame

    Parameters
    ----------
    config : CalculatorConfig
        Calculator to run.  The session works on a private copy.
    store : VariableStore | None
        Store to bind; seeded with every input/slider default.
    evaluator : Evaluator | None
        Evaluator to use; built from *settings* when omitted.
    settings : Settings | None
        Formatting and chart options.
    """

    def __init__(
        self,
        config: CalculatorConfig,
        store: VariableStore | None = None,
        evaluator: Evaluator | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.config = config.model_copy(deep=True)
        self.settings = settings or Settings()
        self.evaluator = evaluator or Evaluator(
            Sanitizer(
                max_length=self.settings.max_formula_length,
                max_depth=self.settings.max_nesting_depth,
            ),
            context={"calculator_id": self.config.id},
        )
        self.store = store if store is not None else VariableStore()
        self._listeners: list[ViewListener] = []
        self.store.replace_all(self.config.initial_variables())
        self._unsubscribe = self.store.subscribe(self._on_store_change)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def on_change(self, listener: ViewListener) -> Callable[[], None]:
        """Call *listener* with a fresh :class:`Frame` after every change.

        Returns a function that unregisters the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def close(self) -> None:
        """Detach from the store; listeners receive no further frames."""
        self._unsubscribe()
        self._listeners.clear()

    def _on_store_change(self, version: int, changed: frozenset[str]) -> None:
        self._publish()

    def _publish(self) -> Frame:
        frame = self.render()
        for listener in list(self._listeners):
            try:
                listener(frame)
            except Exception as exc:
                emit_warning(
                    EventType.view_listener_error,
                    f"View listener failed: {exc}",
                    {"calculator_id": self.config.id, "version": frame.version},
                    error_code=LISTENER_FAILED,
                )
        return frame

    # ------------------------------------------------------------------
    # Evaluation and rendering
    # ------------------------------------------------------------------

    def values(self) -> Mapping[str, float]:
        return self.store.snapshot()

    def evaluate(self, formula: str) -> float:
        """Evaluate *formula* against the current variables."""
        return self.evaluator.evaluate(formula, self.store.snapshot())

    def render(self) -> Frame:
        """Evaluate every block against one consistent snapshot."""
        version, snapshot = self.store.versioned_snapshot()
        views = [self._render_block(block, snapshot) for block in self.config.ordered_blocks()]
        emit_info(
            EventType.session_rendered,
            f"Rendered {len(views)} block(s)",
            {"calculator_id": self.config.id, "version": version},
        )
        return Frame(version=version, views=views)

    def _render_block(self, block: Block, snapshot: Mapping[str, float]) -> BlockView:
        match block:
            case TextBlock():
                return TextView(block_id=block.id, content=block.content, size=block.size)
            case InputBlock() | SliderBlock():
                value = snapshot.get(block.variable_name, block.default_value)
                return VariableView(
                    kind=block.type,
                    block_id=block.id,
                    label=block.label,
                    variable_name=block.variable_name,
                    value=value,
                    display=format_number(value, 1, self.settings.locale),
                    suffix=block.suffix,
                    min=block.min,
                    max=block.max,
                    step=block.step if isinstance(block, SliderBlock) else None,
                )
            case ResultBlock():
                return self._render_result(block, snapshot)
            case ChartBlock():
                return self._render_chart(block, snapshot)
            case ComparisonBlock():
                return self._render_comparison(block, snapshot)
            case _:
                raise TypeError(f"Unsupported block type: {type(block).__name__}")

    def _format(self, value: float, kind: str) -> str:
        return format_value(value, kind, self.settings.locale, self.settings.currency)

    def _render_result(self, block: ResultBlock, snapshot: Mapping[str, float]) -> ResultView:
        result: EvaluationResult = self.evaluator.evaluate_result(block.formula, snapshot)
        display = self._format(result.value, block.format)
        if block.format == "percent" and result.value > 0:
            display = f"+{display}"
        return ResultView(
            block_id=block.id,
            label=block.label,
            value=result.value,
            valid=result.valid,
            display=display,
            format=block.format,
            size=block.size,
            color=block.color,
        )

    def _render_chart(self, block: ChartBlock, snapshot: Mapping[str, float]) -> ChartView:
        before_formula, after_formula = block.split_formulas()
        before = self.settings.chart_before_fallback
        after = self.settings.chart_after_fallback
        # A formula evaluating to 0 keeps the placeholder series
        if before_formula is not None:
            before = self.evaluator.evaluate(before_formula, snapshot) or before
        if after_formula is not None:
            after = self.evaluator.evaluate(after_formula, snapshot) or after

        points = [
            ChartPoint(
                label=label,
                before=_series_value(before, i + 1),
                after=_series_value(after, i + 1),
            )
            for i, label in enumerate(self.settings.chart_labels)
        ]
        return ChartView(
            block_id=block.id,
            title=block.title,
            chart_type=block.chart_type,
            before_label=block.before_label,
            after_label=block.after_label,
            before_value=before,
            after_value=after,
            points=points,
        )

    def _render_comparison(
        self, block: ComparisonBlock, snapshot: Mapping[str, float]
    ) -> ComparisonView:
        rows = [self._render_row(row, snapshot) for row in block.rows]
        return ComparisonView(block_id=block.id, title=block.title, rows=rows)

    def _render_row(self, row: ComparisonRow, snapshot: Mapping[str, float]) -> ComparisonRowView:
        if row.format == "text":
            return ComparisonRowView(
                row_id=row.id,
                label=row.label,
                format=row.format,
                before=None,
                after=None,
                before_display=row.before_formula,
                after_display=row.after_formula,
                is_better=False,
            )
        before = self.evaluator.evaluate(row.before_formula, snapshot)
        after = self.evaluator.evaluate(row.after_formula, snapshot)
        return ComparisonRowView(
            row_id=row.id,
            label=row.label,
            format=row.format,
            before=before,
            after=after,
            before_display=self._format(before, row.format),
            after_display=self._format(after, row.format),
            is_better=after > before,
        )

    # ------------------------------------------------------------------
    # Variables
    # ------------------------------------------------------------------

    def set_variable(self, name: str, value: float) -> int:
        """Live edit of an input or slider value.  Returns the new version."""
        return self.store.set(name, value)

    def set_variables(self, values: Mapping[str, Any]) -> int:
        return self.store.set_many(values)

    # ------------------------------------------------------------------
    # Block lifecycle
    # ------------------------------------------------------------------

    def add_block(self, block: Block, at_index: int | None = None) -> Block:
        """Insert *block* at *at_index* (default: end) and renumber.

        Input and slider blocks create their variable with the default.

        Raises:
            ValueError: If the block id or variable name is already used.
        """
        if self.config.find_block(block.id) is not None:
            raise ValueError(f"Duplicate block id: {block.id!r}")
        if isinstance(block, (InputBlock, SliderBlock)):
            self._check_variable_free(block.variable_name)

        blocks = self.config.ordered_blocks()
        blocks.insert(len(blocks) if at_index is None else at_index, block)
        self._set_blocks(blocks)

        if isinstance(block, (InputBlock, SliderBlock)):
            self.store.set(block.variable_name, block.default_value)
        else:
            self._publish()
        return block

    def update_block(self, block_id: str, **changes: Any) -> Block:
        """Apply field *changes* (snake_case names) to a block.

        Renaming a variable moves its current value to the new name in
        one store mutation; changing ``default_value`` sets the variable.

        Raises:
            KeyError: If no block has *block_id*.
            ValueError: If the change is invalid or changes the block type.
        """
        block = self._require_block(block_id)
        if "type" in changes or "id" in changes:
            raise ValueError("Block type and id cannot be changed")

        updated = type(block).model_validate({**block.model_dump(), **changes})
        if isinstance(block, (InputBlock, SliderBlock)) and updated.variable_name != block.variable_name:
            self._check_variable_free(updated.variable_name, exclude=block_id)
        self._set_blocks([updated if b.id == block_id else b for b in self.config.ordered_blocks()])

        if not isinstance(block, (InputBlock, SliderBlock)):
            self._publish()
            return updated

        old_name, new_name = block.variable_name, updated.variable_name
        if old_name != new_name:
            if old_name in self.store:
                self.store.rename(old_name, new_name)
            else:
                self.store.set(new_name, updated.default_value)
        if "default_value" in changes:
            self.store.set(new_name, updated.default_value)
        elif old_name == new_name:
            self._publish()
        return updated

    def remove_block(self, block_id: str) -> Block:
        """Delete a block; input/slider blocks delete their variable.

        Raises:
            KeyError: If no block has *block_id*.
        """
        block = self._require_block(block_id)
        self._set_blocks([b for b in self.config.ordered_blocks() if b.id != block_id])
        if isinstance(block, (InputBlock, SliderBlock)) and block.variable_name in self.store:
            self.store.delete(block.variable_name)
        else:
            self._publish()
        return block

    def _require_block(self, block_id: str) -> Block:
        block = self.config.find_block(block_id)
        if block is None:
            raise KeyError(f"Unknown block: {block_id!r}")
        return block

    def _check_variable_free(self, name: str, exclude: str | None = None) -> None:
        for other in self.config.blocks:
            if other.id == exclude:
                continue
            if isinstance(other, (InputBlock, SliderBlock)) and other.variable_name == name:
                raise ValueError(f"Variable {name!r} is already used by block {other.id!r}")

    def _set_blocks(self, blocks: list[Block]) -> None:
        self.config.blocks = [b.model_copy(update={"order": i}) for i, b in enumerate(blocks)]


def _series_value(monthly: float, months: int) -> int:
    """Cumulative chart value after *months*, rounded half up."""
    total = fn_round(monthly * months)
    if not math.isfinite(total) or abs(total) >= _INT64_LIMIT:
        return 0
    return int(total)
