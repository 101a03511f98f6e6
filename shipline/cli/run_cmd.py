"""Pipeline commands: run, validate."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from shipline.cli._helpers import (
    check_inputs_or_exit,
    console,
    display_plan,
    display_run_result,
    load_pipeline_or_exit,
    parse_key_values,
)


def validate(
    pipeline_file: Annotated[Path, typer.Argument(help="Path to pipeline YAML")],
) -> None:
    """Validate a pipeline definition and show its execution plan."""
    pipe = load_pipeline_or_exit(pipeline_file)
    display_plan(pipe, {})
    console.print("\n[green]Valid[/green] pipeline definition.")


def run(
    pipeline_file: Annotated[Path, typer.Argument(help="Path to pipeline YAML")],
    input_: Annotated[
        list[str] | None,
        typer.Option("--input", "-i", help="Run input in key=value format (repeatable)"),
    ] = None,
    secrets_file: Annotated[
        list[Path] | None,
        typer.Option("--secrets-file", help="Dotenv file to resolve secrets from (repeatable)"),
    ] = None,
    no_env_secrets: Annotated[
        bool,
        typer.Option("--no-env-secrets", help="Do not resolve secrets from the environment"),
    ] = False,
    timeout: Annotated[
        int | None, typer.Option(help="Abort the whole run after this many seconds")
    ] = None,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Validate and display the plan without executing")
    ] = False,
    summary: Annotated[
        Path | None, typer.Option(help="Append a markdown run summary to this file")
    ] = None,
    json_out: Annotated[
        Path | None, typer.Option("--json", help="Write the run result as JSON to this file")
    ] = None,
) -> None:
    """Run a pipeline."""
    pipe = load_pipeline_or_exit(pipeline_file)
    inputs = parse_key_values(input_)
    check_inputs_or_exit(pipe, inputs)

    if dry_run:
        display_plan(pipe, inputs)
        console.print("\n[green]Pipeline definition is valid.[/green]")
        return

    from shipline._signal import CancelToken, cancel_after, install_shutdown_handler
    from shipline.config import get_global_env_path
    from shipline.pipeline.orchestrator import run_pipeline
    from shipline.secrets import EnvSecretResolver

    env_files = list(secrets_file or []) or [get_global_env_path()]
    resolver = EnvSecretResolver(env_files, include_environ=not no_env_secrets)

    cancel = CancelToken()
    install_shutdown_handler(
        cancel,
        on_first_signal=lambda: console.print(
            "\n[yellow]Cancelling run... (press Ctrl-C again to force)[/yellow]"
        ),
    )
    timer = cancel_after(cancel, timeout) if timeout else None

    def _on_start(step) -> None:
        console.print(f"[dim]▶ {step.name}[/dim]")

    try:
        result = run_pipeline(
            pipe,
            inputs,
            secrets=resolver,
            cancel=cancel,
            base_dir=pipeline_file.parent.resolve(),
            on_step_start=_on_start,
        )
    finally:
        if timer is not None:
            timer.cancel()

    display_run_result(result)

    if summary is not None:
        from shipline.report import export_summary

        try:
            export_summary(result, summary, append=True)
        except OSError as e:
            console.print(f"[yellow]Warning:[/yellow] Summary export failed: {e}")
    if json_out is not None:
        from shipline.report import export_json

        try:
            export_json(result, json_out)
        except OSError as e:
            console.print(f"[yellow]Warning:[/yellow] JSON export failed: {e}")

    if not result.success:
        raise typer.Exit(1)
