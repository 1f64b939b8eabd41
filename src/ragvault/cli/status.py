"""ragvault status / list: owner overview and chunk listing.

status shows database info, usage statistics, and the owner's documents.
list prints the owner's chunks, newest first, optionally metadata-filtered.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ragvault.cli.runtime import (
    cli_errors,
    load_cfg,
    open_pipeline,
    parse_json_object,
    require_db,
    resolve_db,
)
from ragvault.config import RagVaultConfig
from ragvault.db.models import Document, UsageStats

console = Console()


def status_cmd(
    owner: Annotated[str, typer.Option("--owner", "-o", help="Owner scope to report on.")],
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
    client: Annotated[
        str | None,
        typer.Option("--client", help="Client key for rate limiting."),
    ] = None,
) -> None:
    """Show usage statistics and documents for an owner."""
    cfg = load_cfg()
    db_path = resolve_db(cfg, db)

    _show_store_panel(db_path, cfg)

    if not db_path.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  ragvault init",
                title="[bold]Usage[/]",
                expand=False,
            )
        )
        return

    with cli_errors(), open_pipeline(
        cfg, db_path, with_embedder=False, client_key=client
    ) as pipeline:
        stats = pipeline.stats(owner, client_key=client)
        documents = pipeline.store.list_documents(owner)

    _show_usage_panel(owner, stats)
    _show_documents_table(documents)


def list_cmd(
    owner: Annotated[str, typer.Option("--owner", "-o", help="Owner scope to list.")],
    where: Annotated[
        str | None,
        typer.Option("--where", help="Only list chunks whose metadata equals this JSON object."),
    ] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
    client: Annotated[
        str | None,
        typer.Option("--client", help="Client key for rate limiting."),
    ] = None,
) -> None:
    """List an owner's chunks, newest first."""
    cfg = load_cfg()
    db_path = resolve_db(cfg, db)
    require_db(db_path)
    metadata_filter = parse_json_object(where, "--where")

    with cli_errors(), open_pipeline(
        cfg, db_path, with_embedder=False, client_key=client
    ) as pipeline:
        chunks = pipeline.list_chunks(owner, metadata_filter, client_key=client)

    if not chunks:
        console.print(f"[dim]No chunks stored for owner '{escape(owner)}'.[/]")
        raise typer.Exit(0)

    table = Table(title=f"Chunks for owner '{escape(owner)}' ({len(chunks)})")
    table.add_column("ID", justify="right")
    table.add_column("File")
    table.add_column("Bytes", justify="right")
    table.add_column("Metadata")
    table.add_column("Created")
    for chunk in chunks:
        meta = escape(", ".join(f"{k}={v}" for k, v in sorted(chunk.metadata.items())))
        table.add_row(
            str(chunk.id),
            escape(chunk.file_path),
            f"{chunk.chunk_size:,}",
            meta or "[dim]-[/]",
            chunk.created_at,
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_store_panel(db_path: Path, cfg: RagVaultConfig) -> None:
    db_info = escape(str(db_path))
    if db_path.exists():
        size_mb = db_path.stat().st_size / (1024 * 1024)
        db_info = f"{escape(str(db_path))} ({size_mb:.1f} MB)"

    lines = [
        f"Database:   {db_info}",
        f"Embedding:  {cfg.embedding.model} ({cfg.embedding.dimensions} dims)",
        f"LLM:        {cfg.llm.provider}" + (f" / {cfg.llm.model}" if cfg.llm.model else ""),
    ]
    if cfg.rate_limit.enabled:
        lines.append(
            f"Rate limit: {cfg.rate_limit.max_requests} req / "
            f"{cfg.rate_limit.window_seconds}s"
        )
    else:
        lines.append("Rate limit: [dim]disabled[/]")
    console.print(Panel("\n".join(lines), title="[bold]Store[/]", expand=False))


def _show_usage_panel(owner: str, stats: UsageStats) -> None:
    lines = [
        f"Documents: [bold]{stats.document_count}[/]  |  "
        f"Chunks: [bold]{stats.chunk_count:,}[/]  |  "
        f"Bytes: [bold]{stats.total_bytes:,}[/]",
        f"API requests: [bold]{stats.api_requests:,}[/]",
    ]
    title = f"[bold]Usage: {escape(owner)}[/]"
    console.print(Panel("\n".join(lines), title=title, expand=False))


def _show_documents_table(documents: list[Document]) -> None:
    if not documents:
        console.print("[dim]No documents ingested yet.[/]")
        return
    table = Table(title="Documents")
    table.add_column("File")
    table.add_column("Bytes", justify="right")
    table.add_column("Updated")
    for doc in documents:
        table.add_row(escape(doc.file_path), f"{doc.total_chunk_size:,}", doc.updated_at or "")
    console.print(table)
