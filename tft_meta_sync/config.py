"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local secrets and env overrides (gitignored)
  4. Environment variables        — ``TFT_SYNC_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

The orchestrator, provider clients, cache store, and CLI commands all receive
an ``AppConfig`` (or one of its sections), never raw dicts or individual env
var lookups scattered through the codebase.  Provider API keys are the one
exception: they stay in the environment (``METATFT_API_KEY``,
``TACTICS_TOOLS_API_KEY``) and are resolved by ``ProviderConfig.resolve_api_key``.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator

from tft_meta_sync.models.domain import Source

_PROVIDER_SOURCES = {Source.METATFT.value, Source.TACTICS_TOOLS.value}

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite cache database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/tft_meta_sync.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class ProviderConfig(BaseModel):
    """Connection, pacing, and retry settings for one upstream provider."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    base_url: str
    api_key_env: Optional[str] = None
    requests_per_minute: int = 20
    max_retries: int = 3
    retry_delay_ms: int = 1000
    timeout_seconds: float = 30.0

    @field_validator("requests_per_minute")
    @classmethod
    def validate_rpm(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"requests_per_minute must be >= 1, got {v}.")
        return v

    @field_validator("max_retries", "retry_delay_ms")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Retry settings must be non-negative, got {v}.")
        return v

    def resolve_api_key(self) -> Optional[str]:
        """Return the API key from the configured env var, or ``None``."""
        if not self.api_key_env:
            return None
        return os.environ.get(self.api_key_env) or None


class ProvidersConfig(BaseModel):
    """Registry of the upstream providers, keyed by source id."""

    model_config = ConfigDict(frozen=True)

    metatft: ProviderConfig = ProviderConfig(
        base_url="https://api.metatft.com/tft",
        api_key_env="METATFT_API_KEY",
    )
    tactics_tools: ProviderConfig = ProviderConfig(
        base_url="https://api.tactics.tools/tft",
        api_key_env="TACTICS_TOOLS_API_KEY",
    )

    def enabled(self) -> dict[str, ProviderConfig]:
        """Return ``{source_id: ProviderConfig}`` for every enabled provider."""
        return {
            name: cfg
            for name, cfg in (
                (Source.METATFT.value, self.metatft),
                (Source.TACTICS_TOOLS.value, self.tactics_tools),
            )
            if cfg.enabled
        }


class CacheConfig(BaseModel):
    """Freshness and backup retention for the local cache."""

    model_config = ConfigDict(frozen=True)

    max_age_ms: int = 24 * 60 * 60 * 1000
    backup_retention_count: int = 5

    @field_validator("max_age_ms")
    @classmethod
    def validate_max_age(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"max_age_ms must be positive, got {v}.")
        return v

    @field_validator("backup_retention_count")
    @classmethod
    def validate_retention(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"backup_retention_count must be >= 0, got {v}.")
        return v


class SyncConfig(BaseModel):
    """Orchestrator behaviour: default source, naming, and merge precedence."""

    model_config = ConfigDict(frozen=True)

    default_source: str = Source.COMBINED.value
    normalize_names: bool = True
    merge_precedence: list[str] = [Source.METATFT.value, Source.TACTICS_TOOLS.value]

    @field_validator("default_source")
    @classmethod
    def validate_default_source(cls, v: str) -> str:
        valid = {s.value for s in Source}
        if v not in valid:
            raise ValueError(f"default_source must be one of {sorted(valid)}, got '{v}'.")
        return v

    @field_validator("merge_precedence")
    @classmethod
    def validate_precedence(cls, v: list[str]) -> list[str]:
        unknown = [s for s in v if s not in _PROVIDER_SOURCES]
        if unknown:
            raise ValueError(
                f"merge_precedence contains unknown providers {unknown}; "
                f"expected a subset of {sorted(_PROVIDER_SOURCES)}."
            )
        return v


class SchedulerConfig(BaseModel):
    """Fixed-cadence refresh settings."""

    model_config = ConfigDict(frozen=True)

    interval_minutes: int = 60
    run_on_start: bool = True

    @field_validator("interval_minutes")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"interval_minutes must be >= 1, got {v}.")
        return v


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/tft_meta_sync.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration — the single source of truth.

    Constructed by ``load_config()`` which merges TOML + .env + env vars.
    ``AppConfig()`` with no arguments gives the built-in defaults, which is
    what the test-suite uses.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    providers: ProvidersConfig = ProvidersConfig()
    cache: CacheConfig = CacheConfig()
    sync: SyncConfig = SyncConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    # 1. Load .env file (silently skip if missing)
    load_dotenv(dotenv_path=root / ".env", override=False)

    # 2. Load TOML config
    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config explicitly."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    # 3. Apply TFT_SYNC_* environment variable overrides
    raw = _apply_env_overrides(raw)

    # 4. Build and validate AppConfig
    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply TFT_SYNC_* env vars to the raw config dict.

    Supported overrides:
      TFT_SYNC_DB_PATH         → raw["database"]["db_path"]
      TFT_SYNC_LOG_LEVEL       → raw["logging"]["level"]
      TFT_SYNC_DEFAULT_SOURCE  → raw["sync"]["default_source"]
      TFT_SYNC_DEBUG           → raw["debug"]
    """
    if db_path := os.environ.get("TFT_SYNC_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if log_level := os.environ.get("TFT_SYNC_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if default_source := os.environ.get("TFT_SYNC_DEFAULT_SOURCE"):
        raw.setdefault("sync", {})["default_source"] = default_source

    if debug := os.environ.get("TFT_SYNC_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})
    providers_raw = raw.get("providers", {})
    defaults = ProvidersConfig()

    def _provider(name: str) -> ProviderConfig:
        # Partial [providers.<name>] tables keep the built-in base_url / key env.
        base = getattr(defaults, name).model_dump()
        return ProviderConfig(**{**base, **providers_raw.get(name, {})})

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        providers=ProvidersConfig(
            metatft=_provider("metatft"),
            tactics_tools=_provider("tactics_tools"),
        ),
        cache=CacheConfig(**raw.get("cache", {})),
        sync=SyncConfig(**raw.get("sync", {})),
        scheduler=SchedulerConfig(**raw.get("scheduler", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
