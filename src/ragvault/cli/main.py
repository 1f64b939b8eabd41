"""ragvault CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from ragvault.cli.ingest import ingest_cmd
from ragvault.cli.init import init_cmd
from ragvault.cli.purge import purge_cmd
from ragvault.cli.query import query_cmd, similar_cmd
from ragvault.cli.status import list_cmd, status_cmd
from ragvault.config import load_config
from ragvault.logging_config import setup_logging


def _version() -> str:
    try:
        return importlib.metadata.version("ragvault")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ragvault {_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="ragvault",
    help=(
        "ragvault: retrieval-augmented generation over an owner-scoped vector store.\n\n"
        "  ragvault ingest   Embed and store chunks (single file or JSONL batch).\n"
        "  ragvault query    Answer a question from stored chunks, streamed."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override logging.level (DEBUG, INFO, WARNING…)."),
    ] = None,
    json_logs: Annotated[
        bool,
        typer.Option("--json-logs", help="Emit structured logs as JSON lines."),
    ] = False,
) -> None:
    """ragvault: retrieval-augmented generation CLI."""
    try:
        cfg = load_config()
        level, as_json = cfg.logging.level, cfg.logging.json
    except ValueError:
        # Commands report config errors themselves.
        level, as_json = "INFO", False
    setup_logging(level=log_level or level, json_logs=json_logs or as_json)


app.command("init")(init_cmd)
app.command("ingest")(ingest_cmd)
app.command("similar")(similar_cmd)
app.command("query")(query_cmd)
app.command("list")(list_cmd)
app.command("purge")(purge_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed ragvault version."""
    typer.echo(f"ragvault {_version()}")


if __name__ == "__main__":
    app()
