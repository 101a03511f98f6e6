"""Shared CLI helpers: console, argument parsing and result display."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from shipline.pipeline.results import RunStatus

if TYPE_CHECKING:
    from shipline.pipeline.results import RunResult
    from shipline.pipeline.schema import PipelineDefinition

console = Console()

_STATUS_STYLES = {
    "succeeded": "[green]PASS[/green]",
    "failed": "[red]FAIL[/red]",
    "skipped": "[dim]SKIP[/dim]",
}


def parse_key_values(pairs: list[str] | None, *, option: str = "--input") -> dict[str, str]:
    """Turn repeated ``key=value`` options into a dict, exiting on bad input."""
    values: dict[str, str] = {}
    for pair in pairs or []:
        if "=" not in pair:
            console.print(
                f"[red]Error:[/red] Invalid {option} format: '{escape(pair)}'. Use key=value."
            )
            raise typer.Exit(1)
        key, value = pair.split("=", 1)
        values[key.strip()] = value
    return values


def load_pipeline_or_exit(path: Path) -> PipelineDefinition:
    from shipline.errors import PipelineValidationError
    from shipline.pipeline.loader import load_pipeline

    try:
        return load_pipeline(path)
    except PipelineValidationError as e:
        where = f" (step '{e.step}', rule {e.rule})" if e.step else f" (rule {e.rule})"
        console.print(f"[red]Invalid:[/red] {escape(str(e))}{where}")
        raise typer.Exit(1) from None


def check_inputs_or_exit(pipe: PipelineDefinition, inputs: dict[str, str]) -> None:
    from shipline.errors import PipelineValidationError
    from shipline.pipeline.orchestrator import check_run_inputs

    try:
        check_run_inputs(pipe, inputs)
    except PipelineValidationError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None


def display_plan(pipe: PipelineDefinition, inputs: dict[str, str]) -> None:
    from shipline.pipeline.orchestrator import execution_order

    table = Table(title=f"Pipeline: {pipe.metadata.name}")
    table.add_column("#", justify="right")
    table.add_column("Step", style="cyan")
    table.add_column("Command")
    table.add_column("Inputs")
    table.add_column("Depends On")
    table.add_column("Condition")
    table.add_column("On Error")

    for i, step in enumerate(execution_order(pipe), 1):
        deps = ", ".join(step.depends_on) if step.depends_on else "(none)"
        cond = step.enabled_when or "(always)"
        policy = "continue" if pipe.spec.continues_on_error(step) else "halt"
        table.add_row(
            str(i),
            step.name,
            escape(step.run),
            ", ".join(step.inputs) or "-",
            deps,
            escape(cond),
            policy,
        )

    console.print(table)

    if inputs:
        console.print("\n[bold]Inputs:[/bold]")
        for k, v in inputs.items():
            console.print(f"  {k} = {escape(v)}")

    console.print(f"\n[bold]Strategy:[/bold] {pipe.spec.error_strategy}")
    if pipe.spec.timeout_seconds:
        console.print(f"[bold]Run timeout:[/bold] {pipe.spec.timeout_seconds}s")


def display_run_result(result: RunResult) -> None:
    table = Table(title=f"Pipeline: {result.pipeline_name} ({result.run_id})")
    table.add_column("Step", style="cyan")
    table.add_column("Status")
    table.add_column("Duration")
    table.add_column("Output (preview)")

    for sr in result.step_results:
        status = _STATUS_STYLES[str(sr.status)]
        detail = sr.skip_reason if sr.skipped else sr.error
        if detail:
            status = f"{status} ({escape(detail)})"
        stdout = sr.outputs.get("stdout", "")
        preview = (stdout[:80] + "...") if len(stdout) > 80 else stdout
        table.add_row(sr.name, status, f"{sr.duration_ms}ms", escape(preview))

    console.print(table)
    total = f"[bold]Total: {result.duration_ms}ms[/bold]"
    if result.success:
        console.print(f"\n{total} [green]Pipeline succeeded[/green]")
        return
    cause = escape(result.cause or "")
    if result.status == RunStatus.PARTIALLY_FAILED:
        console.print(f"\n{total} [yellow]Pipeline partially failed[/yellow]: {cause}")
    else:
        console.print(f"\n{total} [red]Pipeline failed[/red]: {cause}")
