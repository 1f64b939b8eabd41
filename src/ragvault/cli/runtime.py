"""Shared wiring for CLI commands: config, store, pipeline, error rendering."""

from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import typer
from rich.console import Console

from ragvault.cli.errors import (
    err_config,
    err_dependency,
    err_invalid_input,
    err_invalid_metadata,
    err_no_db,
    err_no_token,
    err_rate_limited,
)
from ragvault.config import ConfigError, RagVaultConfig, llm_token, load_config
from ragvault.db.connection import Database
from ragvault.errors import (
    DecodeError,
    DependencyError,
    NotFoundError,
    RateLimitExceeded,
    ValidationError,
)
from ragvault.generate.templates import PromptOptions, RAGPromptBuilder
from ragvault.ingest.batch import BatchCoordinator
from ragvault.ingest.embedder import EmbeddingConfig, LiteLLMEmbedder
from ragvault.rag.llm_client import LLMClient, LLMConfig
from ragvault.rag.pipeline import RagPipeline
from ragvault.ratelimit import RateLimiter
from ragvault.store import EmbeddingStore

console = Console()


def load_cfg() -> RagVaultConfig:
    try:
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)


def resolve_db(cfg: RagVaultConfig, db: Path | None) -> Path:
    return db if db is not None else Path(cfg.store.path)


def require_db(db_path: Path) -> None:
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)


def parse_json_object(raw: str | None, option: str) -> dict[str, Any] | None:
    """Parse a JSON-object CLI option; None passes through."""
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        console.print(err_invalid_metadata(option, raw, exc.msg))
        raise typer.Exit(1)
    if not isinstance(value, dict):
        console.print(err_invalid_metadata(option, raw, f"got {type(value).__name__}"))
        raise typer.Exit(1)
    return value


@contextmanager
def open_pipeline(
    cfg: RagVaultConfig,
    db_path: Path,
    *,
    with_llm: bool = False,
    with_embedder: bool = True,
    client_key: str | None = None,
) -> Iterator[RagPipeline]:
    """Build a pipeline for one CLI invocation and tear it down afterwards.

    The embedder is only opened (credentials checked) when *with_embedder*
    is set; the LLM client is only built when *with_llm* is set.
    """
    database = Database(db_path, busy_timeout=cfg.store.busy_timeout)
    embedder = LiteLLMEmbedder(
        EmbeddingConfig(model=cfg.embedding.model, dimensions=cfg.embedding.dimensions)
    )
    store = EmbeddingStore(database, embedder)
    store.initialize()

    llm: LLMClient | None = None
    if with_llm:
        token = llm_token()
        if not token:
            console.print(err_no_token(cfg.llm.provider))
            raise typer.Exit(1)
        llm = LLMClient(
            LLMConfig(
                provider=cfg.llm.provider,
                token=token,
                model=cfg.llm.model,
                endpoint=cfg.llm.endpoint,
                temperature=cfg.llm.temperature,
                timeout=cfg.llm.timeout,
            )
        )

    limiter: RateLimiter | None = None
    if client_key and cfg.rate_limit.enabled:
        limiter = RateLimiter.from_url(
            cfg.rate_limit.redis_url,
            window_seconds=cfg.rate_limit.window_seconds,
            max_requests=cfg.rate_limit.max_requests,
            key_prefix=cfg.rate_limit.key_prefix,
        )

    builder = RAGPromptBuilder(
        PromptOptions(
            response_style=cfg.prompt.response_style,
            max_tokens=cfg.prompt.max_tokens,
            temperature=cfg.prompt.temperature,
        )
    )
    pipeline = RagPipeline(
        store,
        llm=llm,
        prompt_builder=builder,
        batch=BatchCoordinator(store, max_workers=cfg.batch.max_workers),
        rate_limiter=limiter,
        default_k=cfg.prompt.top_k,
    )
    try:
        if with_embedder:
            embedder.open()
        yield pipeline
    finally:
        embedder.close()
        if llm is not None:
            llm.close()


@contextmanager
def cli_errors() -> Iterator[None]:
    """Render ragvault errors as actionable messages and exit with code 1."""
    try:
        yield
    except RateLimitExceeded as exc:
        console.print(err_rate_limited(exc.client_key, exc.retry_after))
        raise typer.Exit(1)
    except (ValidationError, NotFoundError) as exc:
        console.print(err_invalid_input(str(exc)))
        raise typer.Exit(1)
    except (DependencyError, DecodeError) as exc:
        console.print(err_dependency(str(exc)))
        raise typer.Exit(1)
