"""Typer CLI for shipline: wiring hub for command modules."""

from __future__ import annotations

from typing import Annotated

import typer

from shipline.cli._helpers import console

app = typer.Typer(
    name="shipline",
    help="Run declarative CI/CD pipelines step by step.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    if value:
        from shipline import __version__

        console.print(f"shipline {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", callback=version_callback, is_eager=True),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Enable debug logging"),
    ] = False,
) -> None:
    """shipline: run declarative CI/CD pipelines step by step."""
    from shipline._log import setup_logging

    setup_logging(verbose=verbose)


from shipline.cli.run_cmd import run, validate  # noqa: E402

app.command()(run)
app.command()(validate)


def app_entry() -> None:
    """Entry point for the CLI."""
    app()
