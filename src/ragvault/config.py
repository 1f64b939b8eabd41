"""ragvault configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (RAGVAULT_DB, RAGVAULT_EMBEDDING_MODEL,
     RAGVAULT_LLM_PROVIDER, RAGVAULT_LLM_MODEL, RAGVAULT_REDIS_URL,
     RAGVAULT_LOG_LEVEL)
  3. Per-project ragvault.yaml
  4. Global ~/.ragvault/config.yaml  (defaults only, no credentials)
  5. Hardcoded defaults

The LLM bearer token is read from RAGVAULT_LLM_TOKEN only; it never comes
from a config file. All YAML reads use yaml.safe_load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".ragvault"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "ragvault.yaml"

TOKEN_ENV_VAR = "RAGVAULT_LLM_TOKEN"

# Credential-like key names, forbidden in global config.
# Does NOT match legitimate keys like max_tokens or key_prefix.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["store", "embedding", "llm", "rate_limit", "batch", "prompt", "logging"]
)


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class StoreCfg:
    """Relational + vector store (ragvault.yaml: store:)."""

    path: str = ".ragvault.db"
    busy_timeout: float = 30.0


@dataclass
class EmbeddingCfg:
    """Embedding capability (ragvault.yaml: embedding:).

    Attributes:
        model: LiteLLM model string.
        dimensions: Vector length the model produces; fixed per store.
    """

    model: str = "ollama/all-minilm"
    dimensions: int = 384


@dataclass
class LLMCfg:
    """Streaming answer generation (ragvault.yaml: llm:)."""

    provider: str = "groq"
    model: str | None = None
    endpoint: str | None = None
    temperature: float = 0.2
    timeout: float = 60.0


@dataclass
class RateLimitCfg:
    """Sliding-window admission control (ragvault.yaml: rate_limit:)."""

    redis_url: str = "redis://localhost:6379/0"
    window_seconds: int = 100
    max_requests: int = 100
    key_prefix: str = "ratelimit:"
    enabled: bool = True


@dataclass
class BatchCfg:
    max_workers: int = 8


@dataclass
class PromptCfg:
    """Prompt rendering hints (ragvault.yaml: prompt:)."""

    max_tokens: int = 2048
    temperature: float = 0.2
    response_style: str = "concise and factual"
    top_k: int = 10


@dataclass
class LoggingCfg:
    level: str = "INFO"
    json: bool = False


@dataclass
class RagVaultConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    store: StoreCfg = field(default_factory=StoreCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    llm: LLMCfg = field(default_factory=LLMCfg)
    rate_limit: RateLimitCfg = field(default_factory=RateLimitCfg)
    batch: BatchCfg = field(default_factory=BatchCfg)
    prompt: PromptCfg = field(default_factory=PromptCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any credential-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  Credentials must be set via environment variables.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {TOKEN_ENV_VAR}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' (ignored).",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: RagVaultConfig) -> None:
    checks: list[tuple[str, bool, Any]] = [
        ("embedding.dimensions", cfg.embedding.dimensions >= 1, cfg.embedding.dimensions),
        (
            "rate_limit.window_seconds",
            cfg.rate_limit.window_seconds >= 1,
            cfg.rate_limit.window_seconds,
        ),
        (
            "rate_limit.max_requests",
            cfg.rate_limit.max_requests >= 1,
            cfg.rate_limit.max_requests,
        ),
        ("batch.max_workers", cfg.batch.max_workers >= 1, cfg.batch.max_workers),
        ("llm.temperature", 0.0 <= cfg.llm.temperature <= 2.0, cfg.llm.temperature),
        ("llm.timeout", cfg.llm.timeout > 0, cfg.llm.timeout),
        ("prompt.temperature", 0.0 <= cfg.prompt.temperature <= 2.0, cfg.prompt.temperature),
        ("prompt.max_tokens", cfg.prompt.max_tokens >= 1, cfg.prompt.max_tokens),
        ("prompt.top_k", cfg.prompt.top_k >= 1, cfg.prompt.top_k),
        ("store.busy_timeout", cfg.store.busy_timeout >= 0, cfg.store.busy_timeout),
    ]
    for name, ok, value in checks:
        if not ok:
            raise ConfigError(f"Invalid value for '{name}': {value!r}")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse '{path}': {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"'{path}' must contain a mapping at the top level")
    return data


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _cfg_from_dict(data: dict[str, Any]) -> RagVaultConfig:
    """Build a *RagVaultConfig* from a merged raw YAML dict."""
    cfg = RagVaultConfig()

    try:
        if "store" in data:
            s = data["store"] or {}
            cfg.store = StoreCfg(
                path=str(s.get("path", cfg.store.path)),
                busy_timeout=float(s.get("busy_timeout", cfg.store.busy_timeout)),
            )

        if "embedding" in data:
            e = data["embedding"] or {}
            cfg.embedding = EmbeddingCfg(
                model=str(e.get("model", cfg.embedding.model)),
                dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            )

        if "llm" in data:
            m = data["llm"] or {}
            cfg.llm = LLMCfg(
                provider=str(m.get("provider", cfg.llm.provider)),
                model=_optional_str(m.get("model", cfg.llm.model)),
                endpoint=_optional_str(m.get("endpoint", cfg.llm.endpoint)),
                temperature=float(m.get("temperature", cfg.llm.temperature)),
                timeout=float(m.get("timeout", cfg.llm.timeout)),
            )

        if "rate_limit" in data:
            r = data["rate_limit"] or {}
            cfg.rate_limit = RateLimitCfg(
                redis_url=str(r.get("redis_url", cfg.rate_limit.redis_url)),
                window_seconds=int(r.get("window_seconds", cfg.rate_limit.window_seconds)),
                max_requests=int(r.get("max_requests", cfg.rate_limit.max_requests)),
                key_prefix=str(r.get("key_prefix", cfg.rate_limit.key_prefix)),
                enabled=bool(r.get("enabled", cfg.rate_limit.enabled)),
            )

        if "batch" in data:
            b = data["batch"] or {}
            cfg.batch = BatchCfg(
                max_workers=int(b.get("max_workers", cfg.batch.max_workers)),
            )

        if "prompt" in data:
            p = data["prompt"] or {}
            cfg.prompt = PromptCfg(
                max_tokens=int(p.get("max_tokens", cfg.prompt.max_tokens)),
                temperature=float(p.get("temperature", cfg.prompt.temperature)),
                response_style=str(p.get("response_style", cfg.prompt.response_style)),
                top_k=int(p.get("top_k", cfg.prompt.top_k)),
            )

        if "logging" in data:
            lg = data["logging"] or {}
            cfg.logging = LoggingCfg(
                level=str(lg.get("level", cfg.logging.level)).upper(),
                json=bool(lg.get("json", cfg.logging.json)),
            )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: RagVaultConfig) -> RagVaultConfig:
    """Apply RAGVAULT_* environment variable overrides."""
    if path := os.environ.get("RAGVAULT_DB"):
        cfg.store.path = path
    if model := os.environ.get("RAGVAULT_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if provider := os.environ.get("RAGVAULT_LLM_PROVIDER"):
        cfg.llm.provider = provider
    if model := os.environ.get("RAGVAULT_LLM_MODEL"):
        cfg.llm.model = model
    if url := os.environ.get("RAGVAULT_REDIS_URL"):
        cfg.rate_limit.redis_url = url
    if level := os.environ.get("RAGVAULT_LOG_LEVEL"):
        cfg.logging.level = level.upper()
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> RagVaultConfig:
    """Load and return a merged *RagVaultConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *ragvault.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: Credential-like keys in global config, or a value that
            fails validation.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = _read_yaml(global_path)
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _read_yaml(project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg


def llm_token() -> str:
    """Return the LLM bearer token from the environment ('' when unset)."""
    return os.environ.get(TOKEN_ENV_VAR, "")


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.ragvault/config.yaml`` with defaults if it does not exist.

    Creates the parent directory with mode 0o700 and the file with 0o600.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# ragvault global configuration (defaults only).\n"
            "# NEVER store credentials here; use environment variables:\n"
            f"#   export {TOKEN_ENV_VAR}=gsk_...\n"
            "\n"
            "embedding:\n"
            "  model: ollama/all-minilm\n"
            "  dimensions: 384\n"
            "\n"
            "llm:\n"
            "  provider: groq\n"
            "\n"
            "rate_limit:\n"
            "  redis_url: redis://localhost:6379/0\n"
            "  window_seconds: 100\n"
            "  max_requests: 100\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
