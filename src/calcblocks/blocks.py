"""Calculator block models.

Blocks form a tagged union discriminated by ``type``.  JSON uses the
camelCase keys of the calculator builder (``variableName``,
``dataFormula``, ``beforeFormula``...); formula strings are stored and
returned verbatim.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Iterator, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from calcblocks.variables import check_variable_name


def new_id() -> str:
    return uuid.uuid4().hex[:21]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ────────────────────────────────────────────────────────────────
# Blocks (discriminated union)
# ────────────────────────────────────────────────────────────────


class _BlockBase(_Model):
    id: str = Field(default_factory=new_id)
    order: int = 0


class TextBlock(_BlockBase):
    type: Literal["text"] = "text"
    content: str = ""
    size: Literal["h1", "h2", "h3", "body"] = "body"


class _VariableBlock(_BlockBase):
    label: str = ""
    variable_name: str
    default_value: float = 0.0
    suffix: str = ""

    @field_validator("variable_name")
    @classmethod
    def _valid_name(cls, v: str) -> str:
        return check_variable_name(v)


class InputBlock(_VariableBlock):
    type: Literal["input"] = "input"
    label: str = "New input"
    variable_name: str = Field(default_factory=lambda: f"input_{uuid.uuid4().hex[:6]}")
    default_value: float = 100
    min: float = 0
    max: float = 1000


class SliderBlock(_VariableBlock):
    type: Literal["slider"] = "slider"
    label: str = "New slider"
    variable_name: str = Field(default_factory=lambda: f"slider_{uuid.uuid4().hex[:6]}")
    default_value: float = 50
    min: float = 0
    max: float = 100
    step: float = 1


class ResultBlock(_BlockBase):
    type: Literal["result"] = "result"
    label: str = "Result"
    formula: str = "0"
    format: Literal["number", "currency", "percent"] = "number"
    size: Literal["small", "medium", "large"] = "medium"
    color: Literal["default", "accent", "success", "warning"] = "default"


class ChartBlock(_BlockBase):
    type: Literal["chart"] = "chart"
    title: str = "Comparison"
    chart_type: Literal["area", "bar", "line"] = "area"
    # "before:after" or a single "after" formula
    data_formula: str = ""
    before_label: str = "Before"
    after_label: str = "After"

    def split_formulas(self) -> tuple[str | None, str | None]:
        """Return ``(before, after)`` formulas from ``data_formula``."""
        if not self.data_formula:
            return None, None
        parts = self.data_formula.split(":")
        if len(parts) >= 2:
            return parts[0], parts[1]
        return None, self.data_formula


class ComparisonRow(_Model):
    id: str = Field(default_factory=new_id)
    label: str = "Value 1"
    before_formula: str = "0"
    after_formula: str = "0"
    format: Literal["number", "currency", "percent", "text"] = "number"


class ComparisonBlock(_BlockBase):
    type: Literal["comparison"] = "comparison"
    title: str = "Comparison"
    rows: list[ComparisonRow] = Field(default_factory=lambda: [ComparisonRow()])


Block = Annotated[
    Union[TextBlock, InputBlock, SliderBlock, ResultBlock, ChartBlock, ComparisonBlock],
    Field(discriminator="type"),
]

BlockKind = Literal["text", "input", "slider", "result", "chart", "comparison"]

_BLOCK_CLASSES: dict[str, type[BaseModel]] = {
    "text": TextBlock,
    "input": InputBlock,
    "slider": SliderBlock,
    "result": ResultBlock,
    "chart": ChartBlock,
    "comparison": ComparisonBlock,
}


def create_block(kind: BlockKind, **fields: object) -> Block:
    """Build a block of *kind* with the builder's defaults.

    Raises:
        ValueError: If *kind* is not a block type.
    """
    if kind not in _BLOCK_CLASSES:
        raise ValueError(f"Unknown block type: {kind!r}. Available: {sorted(_BLOCK_CLASSES)}")
    return _BLOCK_CLASSES[kind](**fields)


# ────────────────────────────────────────────────────────────────
# Calculator
# ────────────────────────────────────────────────────────────────


class ThemeConfig(_Model):
    primary_color: str = "#7EC8F3"
    accent_color: str = "#a6daff"
    background_color: str = "#0a0a0f"
    card_color: str = "#12121a"
    text_color: str = "#ffffff"
    border_color: str = "#1f1f2e"


class FormulaRef(BaseModel):
    """Location of one formula inside a calculator."""

    block_id: str
    field: str
    formula: str
    row_id: str | None = None


class CalculatorConfig(_Model):
    id: str = Field(default_factory=new_id)
    name: str = "My calculator"
    description: str = ""
    blocks: list[Block] = Field(default_factory=list)
    variables: dict[str, float] = Field(default_factory=dict)
    theme: ThemeConfig = Field(default_factory=ThemeConfig)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def ordered_blocks(self) -> list[Block]:
        return sorted(self.blocks, key=lambda b: b.order)

    def find_block(self, block_id: str) -> Block | None:
        for block in self.blocks:
            if block.id == block_id:
                return block
        return None

    def initial_variables(self) -> dict[str, float]:
        """``{variableName: defaultValue}`` for every input and slider block."""
        return {
            block.variable_name: block.default_value
            for block in self.ordered_blocks()
            if isinstance(block, (InputBlock, SliderBlock))
        }

    def iter_formulas(self) -> Iterator[FormulaRef]:
        """Yield every formula string stored in the calculator."""
        for block in self.ordered_blocks():
            if isinstance(block, ResultBlock):
                yield FormulaRef(block_id=block.id, field="formula", formula=block.formula)
            elif isinstance(block, ChartBlock):
                before, after = block.split_formulas()
                if before is not None:
                    yield FormulaRef(block_id=block.id, field="dataFormula", formula=before)
                if after is not None:
                    yield FormulaRef(block_id=block.id, field="dataFormula", formula=after)
            elif isinstance(block, ComparisonBlock):
                for row in block.rows:
                    if row.format == "text":
                        continue
                    yield FormulaRef(
                        block_id=block.id, row_id=row.id,
                        field="beforeFormula", formula=row.before_formula,
                    )
                    yield FormulaRef(
                        block_id=block.id, row_id=row.id,
                        field="afterFormula", formula=row.after_formula,
                    )

    def to_json(self, indent: int | None = 2) -> str:
        return self.model_dump_json(by_alias=True, indent=indent)

    @classmethod
    def from_json(cls, text: str) -> CalculatorConfig:
        return cls.model_validate_json(text)
