"""ragvault ingest: store chunks for an owner.

Two input modes:
  --file PATH     the whole text file becomes one chunk, stored under PATH
                  (or --as NAME); --metadata attaches a JSON object
  --batch PATH    JSONL, one chunk per line:
                  {"file_path": ..., "chunk_text": ...,
                   "embedding_text": ... (optional), "metadata": {...} (optional)}
                  chunks are ingested concurrently; failures are reported per file
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn

from ragvault.cli.errors import (
    err_batch_line,
    err_file_not_found,
    err_invalid_input,
    warn_partial_batch,
)
from ragvault.cli.runtime import (
    cli_errors,
    load_cfg,
    open_pipeline,
    parse_json_object,
    resolve_db,
)
from ragvault.ingest.batch import ChunkInput

console = Console()


def ingest_cmd(
    owner: Annotated[str, typer.Option("--owner", "-o", help="Owner scope for the chunks.")],
    file: Annotated[
        Path | None,
        typer.Option("--file", "-f", help="Text file to store as one chunk."),
    ] = None,
    batch: Annotated[
        Path | None,
        typer.Option("--batch", "-b", help="JSONL file with one chunk per line."),
    ] = None,
    as_path: Annotated[
        str | None,
        typer.Option("--as", help="File path to record for --file (defaults to the path given)."),
    ] = None,
    metadata: Annotated[
        str | None,
        typer.Option("--metadata", "-m", help="JSON object attached to the --file chunk."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database (created if missing)."),
    ] = None,
    client: Annotated[
        str | None,
        typer.Option("--client", help="Client key for rate limiting."),
    ] = None,
) -> None:
    """Embed and store chunks for an owner."""
    if (file is None) == (batch is None):
        console.print(err_invalid_input("Pass exactly one of --file or --batch."))
        raise typer.Exit(1)

    cfg = load_cfg()
    db_path = resolve_db(cfg, db)

    if file is not None:
        chunk = _chunk_from_file(file, as_path, metadata)
        with cli_errors(), open_pipeline(cfg, db_path, client_key=client) as pipeline:
            embedding = pipeline.chunk(
                owner,
                chunk.file_path,
                chunk.chunk_text,
                metadata=chunk.metadata,
                client_key=client,
            )
        console.print(
            f"[green]✓[/] Stored chunk {embedding.id} for '{escape(chunk.file_path)}' "
            f"({embedding.chunk_size} bytes)"
        )
        return

    assert batch is not None
    chunks = _chunks_from_jsonl(batch)
    if not chunks:
        console.print("[yellow]No chunks found to ingest.[/]")
        raise typer.Exit(0)

    with cli_errors(), open_pipeline(cfg, db_path, client_key=client) as pipeline:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            prog.add_task(f"Ingesting {len(chunks)} chunks…", total=None)
            snapshot = pipeline.chunk_batch(owner, chunks, client_key=client)

    console.print(
        f"[green]✓[/] {snapshot.completed}/{snapshot.total} chunks stored"
    )
    if snapshot.failed:
        console.print(warn_partial_batch(list(snapshot.failed)))
        raise typer.Exit(1)


# ------------------------------------------------------------------
# Input parsing
# ------------------------------------------------------------------


def _chunk_from_file(file: Path, as_path: str | None, metadata: str | None) -> ChunkInput:
    if not file.is_file():
        console.print(err_file_not_found(str(file)))
        raise typer.Exit(1)
    text = file.read_text(encoding="utf-8")
    if not text.strip():
        console.print(f"[yellow]✗ Empty file:[/] {escape(str(file))}")
        raise typer.Exit(0)
    return ChunkInput(
        file_path=as_path or str(file),
        chunk_text=text,
        metadata=parse_json_object(metadata, "--metadata"),
    )


def _chunks_from_jsonl(path: Path) -> list[ChunkInput]:
    if not path.is_file():
        console.print(err_file_not_found(str(path)))
        raise typer.Exit(1)

    chunks: list[ChunkInput] = []
    with path.open(encoding="utf-8") as fh:
        for line_no, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                item = json.loads(line)
            except json.JSONDecodeError as exc:
                console.print(err_batch_line(str(path), line_no, exc.msg))
                raise typer.Exit(1)
            if not isinstance(item, dict) or "file_path" not in item or "chunk_text" not in item:
                console.print(
                    err_batch_line(str(path), line_no, "missing 'file_path' or 'chunk_text'")
                )
                raise typer.Exit(1)
            meta = item.get("metadata")
            if meta is not None and not isinstance(meta, dict):
                console.print(err_batch_line(str(path), line_no, "'metadata' must be an object"))
                raise typer.Exit(1)
            chunks.append(
                ChunkInput(
                    file_path=str(item["file_path"]),
                    chunk_text=str(item["chunk_text"]),
                    embedding_text=item.get("embedding_text"),
                    metadata=meta,
                )
            )
    return chunks
