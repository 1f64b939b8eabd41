"""ragvault query / similar: retrieval and streamed answers.

query streams the generated answer to stdout as fragments arrive, then
prints the sources that were handed to the model.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ragvault.cli.runtime import (
    cli_errors,
    load_cfg,
    open_pipeline,
    parse_json_object,
    require_db,
    resolve_db,
)

console = Console()


class _StdoutSink:
    """Write fragments straight to stdout so the answer appears as it streams."""

    def write(self, text: str) -> int:
        n = sys.stdout.write(text)
        sys.stdout.flush()
        return n


def query_cmd(
    question: Annotated[str, typer.Argument(help="Question to answer.")],
    owner: Annotated[str, typer.Option("--owner", "-o", help="Owner scope to search.")],
    k: Annotated[
        int | None,
        typer.Option("--k", "-k", help="Documents to retrieve (default: prompt.top_k)."),
    ] = None,
    where: Annotated[
        str | None,
        typer.Option("--where", help="Only use chunks whose metadata equals this JSON object."),
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
    client: Annotated[
        str | None,
        typer.Option("--client", help="Client key for rate limiting."),
    ] = None,
) -> None:
    """Answer a question from the owner's chunks, streaming the response."""
    cfg = load_cfg()
    db_path = resolve_db(cfg, db)
    require_db(db_path)
    metadata_filter = parse_json_object(where, "--where")

    with cli_errors(), open_pipeline(cfg, db_path, with_llm=True, client_key=client) as pipeline:
        result = pipeline.query(
            owner,
            question,
            _StdoutSink(),
            k=k,
            metadata_filter=metadata_filter,
            client_key=client,
        )

    sys.stdout.write("\n")
    if result.matches:
        console.print("\n[dim]Sources:[/]")
        for i, match in enumerate(result.matches):
            console.print(f"  [{i}] {escape(match.file_path)}  [dim](similarity {match.similarity:.3f})[/]")
    else:
        console.print("\n[yellow]No stored chunks matched; the answer has no sources.[/]")


def similar_cmd(
    text: Annotated[str, typer.Argument(help="Text to find neighbours for.")],
    owner: Annotated[str, typer.Option("--owner", "-o", help="Owner scope to search.")],
    k: Annotated[int | None, typer.Option("--k", "-k", help="Number of results.")] = None,
    where: Annotated[
        str | None,
        typer.Option("--where", help="Only return chunks whose metadata equals this JSON object."),
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
    client: Annotated[
        str | None,
        typer.Option("--client", help="Client key for rate limiting."),
    ] = None,
) -> None:
    """Show the stored chunks nearest to TEXT."""
    cfg = load_cfg()
    db_path = resolve_db(cfg, db)
    require_db(db_path)
    metadata_filter = parse_json_object(where, "--where")

    with cli_errors(), open_pipeline(cfg, db_path, client_key=client) as pipeline:
        matches = pipeline.similar(
            owner, text, k=k, metadata_filter=metadata_filter, client_key=client
        )

    if not matches:
        console.print("[yellow]No matching chunks.[/]")
        raise typer.Exit(0)

    table = Table(title=f"Nearest chunks for owner '{escape(owner)}'")
    table.add_column("#", justify="right")
    table.add_column("ID", justify="right")
    table.add_column("File")
    table.add_column("Similarity", justify="right")
    table.add_column("Text")
    for i, match in enumerate(matches):
        snippet = match.chunk_text.replace("\n", " ")
        table.add_row(
            str(i),
            str(match.id),
            escape(match.file_path),
            f"{match.similarity:.3f}",
            escape(snippet[:60]) + ("…" if len(snippet) > 60 else ""),
        )
    console.print(table)
