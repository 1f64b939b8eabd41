"""ragvault init: create the store and config scaffold.

Creates:
  .ragvault.db             (schema migrated to the current version)
  ragvault.yaml            (per-project config with every section commented)
  ~/.ragvault/config.yaml  (global defaults, created once, mode 0o600)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from ragvault.config import ensure_global_config
from ragvault.db.connection import Database
from ragvault.db.schema import initialize

console = Console()

_DEFAULT_PROJECT_DIR = Path(".")

_PROJECT_YAML = """\
# ragvault project configuration.
# Credentials never go here; set RAGVAULT_LLM_TOKEN in the environment.

store:
  path: .ragvault.db

embedding:
  model: ollama/all-minilm
  dimensions: 384

llm:
  provider: groq
  temperature: 0.2

rate_limit:
  redis_url: redis://localhost:6379/0
  window_seconds: 100
  max_requests: 100

batch:
  max_workers: 8

prompt:
  max_tokens: 2048
  response_style: concise and factual
  top_k: 10
"""


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
    global_config: Annotated[
        Path | None,
        typer.Option("--global-config", hidden=True, help="Override global config path."),
    ] = None,
) -> None:
    """Create the database and config files for a new ragvault project."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    db_path = project_dir / ".ragvault.db"
    if db_path.exists():
        console.print(f"[yellow]⚠[/]  {db_path} already exists; migrating schema only.")

    db = Database(db_path)
    with db.session() as conn:
        initialize(conn)
    console.print(f"  [green]✓[/] {db_path}")

    yaml_path = project_dir / "ragvault.yaml"
    if yaml_path.exists():
        console.print(f"  [dim]↷ {yaml_path} kept[/]")
    else:
        yaml_path.write_text(_PROJECT_YAML, encoding="utf-8")
        console.print(f"  [green]✓[/] {yaml_path}")

    cfg_path = ensure_global_config(global_config)
    console.print(f"  [green]✓[/] {cfg_path} (global config)")

    console.print("\n[bold green]✓ ragvault initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. ragvault ingest --owner <id> --file <path>     (store chunks)")
    console.print("  2. ragvault similar --owner <id> \"<text>\"          (check retrieval)")
    console.print("  3. ragvault query --owner <id> \"<question>\"        (streamed answer)")
