"""ragvault purge: delete every embedding of an owner.

Documents are kept (their aggregate size is reset to 0). --dry-run reports
what would be removed without writing.

Usage:
  ragvault purge --owner alice --dry-run
  ragvault purge --owner alice --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from ragvault.cli.errors import warn_nothing_to_purge
from ragvault.cli.runtime import cli_errors, load_cfg, open_pipeline, require_db, resolve_db
from ragvault.db.models import DeletionStats

console = Console()


def purge_cmd(
    owner: Annotated[str, typer.Option("--owner", "-o", help="Owner whose embeddings are deleted.")],
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show what would be deleted without writing."),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
    client: Annotated[
        str | None,
        typer.Option("--client", help="Client key for rate limiting."),
    ] = None,
) -> None:
    """Delete all embeddings stored for an owner."""
    cfg = load_cfg()
    db_path = resolve_db(cfg, db)
    require_db(db_path)

    with cli_errors(), open_pipeline(
        cfg, db_path, with_embedder=False, client_key=client
    ) as pipeline:
        preview = pipeline.purge(owner, dry_run=True, client_key=client)
        if preview.embedding_count == 0:
            console.print(warn_nothing_to_purge(owner))
            raise typer.Exit(0)

        console.print(f"\nPurge owner: [bold]{escape(owner)}[/]")
        _print_stats(preview)

        if dry_run:
            console.print("\n[dim]Dry run: nothing deleted.[/]")
            return

        if not yes:
            if not typer.confirm("Confirm purge?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        stats = pipeline.purge(owner, client_key=client)

    console.print(
        f"\n[green]✓[/] Purged {stats.embedding_count} embeddings "
        f"from {stats.document_count} documents ({stats.total_bytes:,} bytes)"
    )


def _print_stats(stats: DeletionStats) -> None:
    console.print(
        f"  Embeddings: {stats.embedding_count}  |  "
        f"Documents: {stats.document_count}  |  "
        f"Bytes: {stats.total_bytes:,}"
    )
    for path in stats.file_paths[:10]:
        console.print(f"    {escape(path)}")
    if len(stats.file_paths) > 10:
        console.print(f"    [dim]… and {len(stats.file_paths) - 10} more[/]")
