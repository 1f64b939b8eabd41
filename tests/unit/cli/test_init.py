"""Tests for ragvault init."""

from __future__ import annotations

import stat
from pathlib import Path

import yaml
from typer.testing import CliRunner

from ragvault.cli.main import app
from ragvault.db.connection import Database
from ragvault.db.schema import schema_version

runner = CliRunner()


def _run_init(project: Path, global_cfg: Path):
    return runner.invoke(app, ["init", str(project), "--global-config", str(global_cfg)])


def test_init_creates_scaffold(cli_project: Path) -> None:
    project = cli_project / "new-project"
    global_cfg = cli_project / "home" / "config.yaml"

    result = _run_init(project, global_cfg)

    assert result.exit_code == 0, result.output
    assert "ragvault initialized" in result.output
    assert (project / ".ragvault.db").exists()
    assert global_cfg.exists()
    assert stat.S_IMODE(global_cfg.stat().st_mode) == 0o600

    data = yaml.safe_load((project / "ragvault.yaml").read_text(encoding="utf-8"))
    assert data["llm"]["provider"] == "groq"
    assert data["rate_limit"]["window_seconds"] == 100
    assert data["prompt"]["top_k"] == 10


def test_init_migrates_schema(cli_project: Path) -> None:
    project = cli_project / "p"
    _run_init(project, cli_project / "home" / "config.yaml")

    with Database(project / ".ragvault.db").session() as conn:
        assert schema_version(conn) >= 1
        tables = {
            row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
    assert {"documents", "embeddings", "api_usage"} <= tables


def test_init_is_idempotent(cli_project: Path) -> None:
    project = cli_project / "p"
    global_cfg = cli_project / "home" / "config.yaml"
    _run_init(project, global_cfg)
    (project / "ragvault.yaml").write_text("llm:\n  provider: openai\n", encoding="utf-8")

    result = _run_init(project, global_cfg)

    assert result.exit_code == 0, result.output
    assert "already exists" in result.output
    assert "kept" in result.output
    assert "openai" in (project / "ragvault.yaml").read_text(encoding="utf-8")


def test_init_prints_next_steps(cli_project: Path) -> None:
    result = _run_init(cli_project / "p", cli_project / "home" / "config.yaml")
    assert "Next steps" in result.output
    assert "ragvault ingest" in result.output
    assert "ragvault query" in result.output
