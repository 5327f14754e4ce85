"""Command-line interface for calcblocks (formula evaluation and calculator rendering)."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from calcblocks import __version__


@click.group()
@click.version_option(version=__version__, prog_name="calcblocks")
def main() -> None:
    """calcblocks -- safe formula engine for block-based calculators."""


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _parse_assignments(items: tuple[str, ...], option: str) -> dict[str, float]:
    values: dict[str, float] = {}
    for item in items:
        if "=" not in item:
            raise click.ClickException(f"Invalid {option} format: {item!r}. Use name=value.")
        name, raw = item.split("=", 1)
        try:
            values[name.strip()] = float(raw)
        except ValueError:
            raise click.ClickException(f"Invalid {option} value for {name!r}: {raw!r} is not a number")
    return values


def _load_settings(project: str | None):
    """Settings for *project*; also routes events to its log directory."""
    from calcblocks.logging.events import set_project_dir
    from calcblocks.project import load_settings

    if project is None:
        return load_settings()
    project_dir = Path(project)
    try:
        set_project_dir(project_dir)
        return load_settings(project_dir)
    except ValueError as e:
        raise click.ClickException(str(e))


def _build_evaluator(settings, calculator_id: str | None = None):
    from calcblocks.formulas import Evaluator, Sanitizer

    sanitizer = Sanitizer(
        max_length=settings.max_formula_length,
        max_depth=settings.max_nesting_depth,
    )
    context = {"calculator_id": calculator_id} if calculator_id else None
    return Evaluator(sanitizer, context=context)


def _load_calculator(path: str):
    from pydantic import ValidationError

    from calcblocks.blocks import CalculatorConfig
    from calcblocks.logging.events import INVALID_CALCULATOR, EventType, emit_error

    try:
        return CalculatorConfig.from_json(Path(path).read_text())
    except ValidationError as e:
        emit_error(
            EventType.calculator_invalid,
            f"Invalid calculator config {path}",
            {"path": str(path), "error_count": e.error_count()},
            error_code=INVALID_CALCULATOR,
        )
        raise click.ClickException(f"Invalid calculator config {path}: {e}")


def _number_text(value: float) -> str:
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


# ---------------------------------------------------------------------------
# Formulas
# ---------------------------------------------------------------------------


@main.command("eval")
@click.argument("formula")
@click.option("--var", "assignments", multiple=True, help="Variable value as name=value.")
@click.option("--format", "fmt", default=None, type=click.Choice(["number", "currency", "percent"]), help="Format the result for display.")
@click.option("--locale", default=None, help="Display locale (e.g. de-DE, en-US).")
@click.option("--currency", default=None, help="Currency code for --format currency.")
@click.option("--project", default=None, type=click.Path(exists=True, file_okay=False), help="Project directory.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def eval_cmd(
    formula: str,
    assignments: tuple[str, ...],
    fmt: str | None,
    locale: str | None,
    currency: str | None,
    project: str | None,
    as_json: bool,
) -> None:
    """Evaluate FORMULA and print the result.

    Invalid formulas print 0, exactly as a calculator would show them.
    """
    from calcblocks.formatting import format_value

    settings = _load_settings(project)
    variables = _parse_assignments(assignments, "--var")
    result = _build_evaluator(settings).evaluate_result(formula, variables)

    display = None
    if fmt is not None:
        try:
            display = format_value(
                result.value, fmt, locale or settings.locale, currency or settings.currency
            )
        except ValueError as e:
            raise click.ClickException(str(e))

    if as_json:
        out = {"formula": formula, "value": result.value, "valid": result.valid}
        if display is not None:
            out["display"] = display
        click.echo(json.dumps(out, indent=2))
    else:
        click.echo(display if display is not None else _number_text(result.value))


@main.command("validate")
@click.argument("formula")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def validate_cmd(formula: str, as_json: bool) -> None:
    """Check FORMULA without evaluating it.  Exits 1 when invalid."""
    from calcblocks.formulas import validate

    result = validate(formula)
    if as_json:
        click.echo(result.model_dump_json(indent=2))
    elif result.valid:
        click.echo("OK")
    else:
        click.echo(f"Invalid: {result.error}")
    if not result.valid:
        sys.exit(1)


@main.command("vars")
@click.argument("formula")
def vars_cmd(formula: str) -> None:
    """Print the variables FORMULA references, one per line."""
    from calcblocks.formulas import extract_variables

    for name in extract_variables(formula):
        click.echo(name)


@main.command("functions")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def functions_cmd(as_json: bool) -> None:
    """List the functions and constants formulas may use."""
    from calcblocks.functions import registry_snapshot

    snapshot = registry_snapshot()
    if as_json:
        click.echo(json.dumps(snapshot, indent=2))
        return
    for name, info in snapshot.items():
        kind = "constant" if info["constant"] else f"{info['arity']} argument(s)"
        click.echo(f"  {name:10s} {kind}")


# ---------------------------------------------------------------------------
# Calculators
# ---------------------------------------------------------------------------


@main.command("render")
@click.argument("calculator_json", type=click.Path(exists=True, dir_okay=False))
@click.option("--set", "overrides", multiple=True, help="Override a variable as name=value.")
@click.option("--project", default=None, type=click.Path(exists=True, file_okay=False), help="Project directory.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def render_cmd(calculator_json: str, overrides: tuple[str, ...], project: str | None, as_json: bool) -> None:
    """Render every block of CALCULATOR_JSON with its current values."""
    from calcblocks.session import CalculatorSession

    settings = _load_settings(project)
    config = _load_calculator(calculator_json)
    session = CalculatorSession(
        config,
        evaluator=_build_evaluator(settings, config.id),
        settings=settings,
    )
    values = _parse_assignments(overrides, "--set")
    if values:
        try:
            session.set_variables(values)
        except ValueError as e:
            raise click.ClickException(str(e))

    frame = session.render()
    session.close()

    if as_json:
        click.echo(frame.model_dump_json(indent=2))
        return

    click.echo(f"{config.name} (version {frame.version})")
    for view in frame.views:
        click.echo(_describe_view(view))


def _describe_view(view) -> str:
    if view.kind == "text":
        return f"  [text]       {view.content}"
    if view.kind in ("input", "slider"):
        suffix = f" {view.suffix}" if view.suffix else ""
        return f"  [{view.kind}]{' ' * (11 - len(view.kind))}{view.label}: {view.display}{suffix}  ({{{view.variable_name}}})"
    if view.kind == "result":
        marker = "" if view.valid else "  (invalid formula)"
        return f"  [result]     {view.label}: {view.display}{marker}"
    if view.kind == "chart":
        last = view.points[-1] if view.points else None
        tail = f"  {last.label}: {last.before} -> {last.after}" if last else ""
        return (
            f"  [chart]      {view.title}: {view.before_label}={_number_text(view.before_value)} "
            f"{view.after_label}={_number_text(view.after_value)}{tail}"
        )
    lines = [f"  [comparison] {view.title}"]
    for row in view.rows:
        better = "  *" if row.is_better else ""
        lines.append(f"    {row.label}: {row.before_display} -> {row.after_display}{better}")
    return "\n".join(lines)


@main.command("check")
@click.argument("calculator_json", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def check_cmd(calculator_json: str, as_json: bool) -> None:
    """Validate every formula in CALCULATOR_JSON.  Exits 1 if any is invalid."""
    from calcblocks.formulas import validate

    config = _load_calculator(calculator_json)
    problems = []
    checked = 0
    for ref in config.iter_formulas():
        checked += 1
        result = validate(ref.formula)
        if not result.valid:
            problems.append({
                "block_id": ref.block_id,
                "row_id": ref.row_id,
                "field": ref.field,
                "formula": ref.formula,
                "error": result.error,
            })

    if as_json:
        click.echo(json.dumps({"checked": checked, "invalid": problems}, indent=2))
    else:
        for p in problems:
            where = p["block_id"] if p["row_id"] is None else f"{p['block_id']}/{p['row_id']}"
            click.echo(f"  {where} {p['field']}: {p['formula']!r} -- {p['error']}")
        if problems:
            click.echo(f"{len(problems)} of {checked} formula(s) invalid")
        else:
            click.echo(f"All {checked} formula(s) valid")
    if problems:
        sys.exit(1)


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------


@main.command("init")
@click.argument("directory", type=click.Path(file_okay=False))
def init_cmd(directory: str) -> None:
    """Write a default calcblocks.yaml into DIRECTORY."""
    from calcblocks.project import write_default_config

    try:
        path = write_default_config(Path(directory))
    except FileExistsError as e:
        raise click.ClickException(str(e))
    click.echo(f"Created {path}")


@main.command("logs")
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--level", default=None, type=click.Choice(["info", "warning", "error"]), help="Filter by level.")
@click.option("--type", "event_type", default=None, help="Filter by event type.")
@click.option("--calculator", "calculator_id", default=None, help="Show only this calculator's log.")
@click.option("--limit", default=100, type=int, help="Maximum events to show.")
def logs_cmd(
    directory: str,
    level: str | None,
    event_type: str | None,
    calculator_id: str | None,
    limit: int,
) -> None:
    """Show the structured event log for DIRECTORY.

    With --calculator, reads that calculator's own log file.
    """
    from calcblocks.logging.sink import EventSink

    sink = EventSink(Path(directory))
    if calculator_id:
        events = sink.read_calculator_log(calculator_id)
        if level:
            events = [e for e in events if e.get("level") == level]
        if event_type:
            events = [e for e in events if e.get("event_type") == event_type]
        events = events[::-1][:limit]
    else:
        events = sink.read_events(level=level, event_type=event_type, limit=limit)

    if not events:
        click.echo("No events found.")
        return

    for evt in events:
        ts = evt.get("ts", "")
        lvl = evt.get("level", "").upper()
        etype = evt.get("event_type", "")
        msg = evt.get("message", "")
        err = evt.get("error_code")
        line = f"[{ts}] {lvl:7s} {etype}: {msg}"
        if err:
            line += f"  ({err})"
        click.echo(line)
