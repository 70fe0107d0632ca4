"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local secrets and env overrides (gitignored)
  4. Environment variables        — ``PURE_API_KEY`` and ``PURE_INGEST_*``

Entry point: ``load_config(config_path=None) -> AppConfig``

The resulting ``AppConfig`` is frozen and is passed explicitly into the API
client, the sync stages, and the scheduler. Nothing below the CLI reads
environment variables.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, SecretStr, field_validator

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/pure_ingest.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 3000

    @field_validator("busy_timeout_ms")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"busy_timeout_ms must be >= 0, got {v}.")
        return v


class ApiConfig(BaseModel):
    """Pure data provider connection settings."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://api.collectpure.com"
    api_key: Optional[SecretStr] = None
    timeout_seconds: float = 30.0

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class SyncConfig(BaseModel):
    """Polling cadences for the two sync loops."""

    model_config = ConfigDict(frozen=True)

    product_interval_seconds: float = 3600.0
    transaction_interval_seconds: float = 21600.0

    @field_validator("product_interval_seconds", "transaction_interval_seconds")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Sync intervals must be positive, got {v}.")
        return v


class RetryConfig(BaseModel):
    """Retry and throttling policy applied to every provider call."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = 10
    initial_backoff_seconds: float = 6.0
    rate_limit_delay_seconds: float = 6.0

    @field_validator("max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"max_retries must be >= 0, got {v}.")
        return v

    @field_validator("initial_backoff_seconds", "rate_limit_delay_seconds")
    @classmethod
    def validate_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"Delays must be non-negative, got {v}.")
        return v


class BatchConfig(BaseModel):
    """Batch sizes for product detail fetches and transaction paging."""

    model_config = ConfigDict(frozen=True)

    product_batch_size: int = 30
    transaction_insert_batch_size: int = 1000

    @field_validator("product_batch_size", "transaction_insert_batch_size")
    @classmethod
    def validate_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Batch sizes must be >= 1, got {v}.")
        return v


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/pure_ingest.log"
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

    Constructed once by ``load_config()`` and handed to every component.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    api: ApiConfig = ApiConfig()
    sync: SyncConfig = SyncConfig()
    retry: RetryConfig = RetryConfig()
    batch: BatchConfig = BatchConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent

# env var → (section, key); values are coerced by the pydantic models.
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "PURE_API_KEY":                         ("api", "api_key"),
    "PURE_INGEST_API_BASE_URL":             ("api", "base_url"),
    "PURE_INGEST_DB_PATH":                  ("database", "db_path"),
    "PURE_INGEST_DB_BUSY_TIMEOUT_MS":       ("database", "busy_timeout_ms"),
    "PURE_INGEST_PRODUCT_SYNC_INTERVAL":    ("sync", "product_interval_seconds"),
    "PURE_INGEST_TRANSACTION_SYNC_INTERVAL": ("sync", "transaction_interval_seconds"),
    "PURE_INGEST_MAX_RETRIES":              ("retry", "max_retries"),
    "PURE_INGEST_INITIAL_BACKOFF":          ("retry", "initial_backoff_seconds"),
    "PURE_INGEST_RATE_LIMIT_DELAY":         ("retry", "rate_limit_delay_seconds"),
    "PURE_INGEST_PRODUCT_BATCH_SIZE":       ("batch", "product_batch_size"),
    "PURE_INGEST_TRANSACTION_BATCH_SIZE":   ("batch", "transaction_insert_batch_size"),
    "PURE_INGEST_LOG_LEVEL":                ("logging", "level"),
}


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
            "Create config/default.toml or pass --config."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    # 3. Apply environment variable overrides
    raw = _apply_env_overrides(raw, os.environ)

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


def _apply_env_overrides(
    raw: dict[str, Any], environ: Mapping[str, str]
) -> dict[str, Any]:
    """Apply ``PURE_API_KEY`` / ``PURE_INGEST_*`` env vars to the raw config dict."""
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        if value := environ.get(env_name):
            raw.setdefault(section, {})[key] = value

    if debug := environ.get("PURE_INGEST_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        api=ApiConfig(**raw.get("api", {})),
        sync=SyncConfig(**raw.get("sync", {})),
        retry=RetryConfig(**raw.get("retry", {})),
        batch=BatchConfig(**raw.get("batch", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        debug=raw.get("debug", False),
    )
