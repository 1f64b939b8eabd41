"""ragvault rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from ragvault.cli.errors import err_no_db
    console.print(err_no_db(".ragvault.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape

from ragvault.config import TOKEN_ENV_VAR


def err_no_db(db_path: str = ".ragvault.db") -> str:
    """No database found at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{escape(str(db_path))}'.\n"
        "  Run:  ragvault init"
    )


def err_no_token(provider: str) -> str:
    """No bearer token for the LLM provider."""
    return (
        f"[red]Error:[/] No API token for LLM provider '{provider}'.\n"
        f"  Set:  export {TOKEN_ENV_VAR}=<token>"
    )


def err_config(message: str) -> str:
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {escape(message)}\n"
        "  Fix ragvault.yaml (or ~/.ragvault/config.yaml) and retry."
    )


def err_invalid_input(message: str) -> str:
    return f"[red]Error:[/] {escape(message)}"


def err_invalid_metadata(option: str, raw: str, reason: str) -> str:
    """A JSON-object option (--metadata, --where) did not parse."""
    return (
        f"[red]Error:[/] {option} must be a JSON object, got: {escape(repr(raw))}\n"
        f"  {escape(reason)}\n"
        f"  Example:  {option} '{{\"lang\": \"en\"}}'"
    )


def err_dependency(message: str) -> str:
    """Store, embedding model, or LLM endpoint failed."""
    return (
        f"[red]Error:[/] {escape(message)}\n"
        "  Check that the embedding model and LLM endpoint are reachable, then retry."
    )


def err_rate_limited(client_key: str, retry_after: float) -> str:
    return (
        f"[red]Error:[/] Rate limit exceeded for '{escape(client_key)}'.\n"
        f"  Retry in {retry_after:.1f}s."
    )


def err_file_not_found(path: str) -> str:
    return (
        f"[red]Error:[/] File not found: '{escape(path)}'\n"
        "  Pass an existing text file with --file, or a JSONL file with --batch."
    )


def err_batch_line(path: str, line_no: int, reason: str) -> str:
    """A JSONL batch line cannot be parsed."""
    return (
        f"[red]Error:[/] {escape(path)}:{line_no}: {escape(reason)}\n"
        '  Each line must be an object: {"file_path": ..., "chunk_text": ...}'
    )


def warn_partial_batch(failed: list[str]) -> str:
    """Shown after a batch where some chunks failed."""
    listed = "\n".join(f"    - {escape(p)}" for p in failed[:20])
    more = f"\n    … and {len(failed) - 20} more" if len(failed) > 20 else ""
    return (
        f"[yellow]⚠[/] {len(failed)} chunk(s) failed:\n{listed}{more}\n"
        "  Re-run ingest for these files; successful chunks are already stored."
    )


def warn_nothing_to_purge(owner: str) -> str:
    return f"[yellow]Nothing to purge:[/] owner '{escape(owner)}' has no stored chunks."
