"""Configuration management for the workspace import bridge using Pydantic.

This module provides type-safe configuration models for the external source
API, tenant credentials, state database, performance tuning and logging.
Values come from a YAML file, from ``WORKSPACE_IMPORT_*`` environment
variables (nested with ``__``), or both.
"""

import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# ${NAME} or ${NAME:-fallback}
_ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def _require_http_url(value: str, label: str) -> str:
    if not value.startswith(("http://", "https://")):
        raise ValueError(f"{label} must start with http:// or https://")
    return value.rstrip("/")


class SourceConfig(BaseModel):
    """Configuration for the external project-management API."""

    provider: str = Field(default="asana", description="External system provider name")
    base_url: str = Field(
        default="https://app.asana.com/api/1.0", description="External API base URL"
    )
    verify_ssl: bool = Field(default=True, description="Verify the API's TLS certificate")
    timeout: int = Field(default=30, ge=1, le=600, description="API request timeout in seconds")
    request_interval_ms: int = Field(
        default=200,
        ge=0,
        le=10000,
        description="Minimum interval between two requests of one client (milliseconds)",
    )
    page_size: int = Field(default=100, ge=1, le=100, description="Page size for list endpoints")
    retry_attempts: int = Field(
        default=3, ge=1, le=10, description="Total attempts for a transient failure"
    )
    retry_backoff_min: float = Field(
        default=1.0, ge=0, le=60, description="Shortest wait before a retry, in seconds"
    )
    retry_backoff_max: float = Field(
        default=30.0, ge=0, le=300, description="Longest wait before a retry, in seconds"
    )
    http_max_connections: int = Field(
        default=20, ge=1, le=200, description="Connection pool size of one client"
    )
    http_max_keepalive_connections: int = Field(
        default=10, ge=1, le=100, description="Idle connections kept open by one client"
    )

    @field_validator("base_url")
    @classmethod
    def normalize_base_url(cls, v: str) -> str:
        return _require_http_url(v, "Source base_url")

    @field_validator("provider")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        return v.strip().lower()

    @model_validator(mode="after")
    def validate_backoff(self) -> "SourceConfig":
        if self.retry_backoff_min > self.retry_backoff_max:
            raise ValueError("retry_backoff_min must not exceed retry_backoff_max")
        return self


class VaultConfig(BaseModel):
    """HashiCorp Vault holding tenant tokens (KV v2, AppRole login)."""

    url: str = Field(..., description="Vault address")
    role_id: str = Field(..., description="AppRole role_id")
    secret_id: str = Field(..., description="AppRole secret_id")
    namespace: str | None = Field(default=None, description="Enterprise namespace")
    mount_point: str = Field(default="secret", description="KV v2 secrets engine mount point")
    path_prefix: str = Field(
        default="workspace-import/tenants", description="Base path for tenant tokens"
    )

    @field_validator("url")
    @classmethod
    def normalize_url(cls, v: str) -> str:
        return _require_http_url(v, "Vault url")

    @field_validator("path_prefix")
    @classmethod
    def strip_slashes(cls, v: str) -> str:
        return v.strip("/")


class CredentialsConfig(BaseModel):
    """Where per-tenant external API tokens come from."""

    backend: Literal["static", "vault"] = Field(
        default="static", description="Credential backend (static or vault)"
    )
    tokens: dict[str, str] = Field(
        default_factory=dict, description="Static tenant_id -> API token map"
    )
    vault: VaultConfig | None = Field(default=None, description="Vault settings")

    @model_validator(mode="after")
    def validate_backend(self) -> "CredentialsConfig":
        if self.backend == "vault" and self.vault is None:
            raise ValueError("credentials.vault must be set when backend is 'vault'")
        return self


class StateConfig(BaseModel):
    """Database holding mappings, runs and the tenant schema."""

    db_path: str = Field(default="./workspace_import.db", description="SQLite file path")
    db_url: str | None = Field(
        default=None, description="Full database URL (overrides db_path, e.g. postgresql://...)"
    )
    # Pool settings are ignored for SQLite, which uses one connection per session
    db_pool_size: int = Field(default=5, ge=1, le=50, description="Persistent pool connections")
    db_max_overflow: int = Field(
        default=10, ge=1, le=100, description="Extra connections allowed above db_pool_size"
    )
    db_pool_timeout: int = Field(
        default=30, ge=1, le=300, description="Seconds to wait for a free pooled connection"
    )
    db_pool_recycle: int = Field(
        default=3600, ge=60, le=28800, description="Maximum age of a pooled connection in seconds"
    )

    @property
    def database_url(self) -> str:
        """Effective SQLAlchemy database URL."""
        if self.db_url:
            return self.db_url
        return f"sqlite:///{self.db_path}"


class PerformanceConfig(BaseModel):
    max_concurrent_projects: int = Field(
        default=4, ge=1, le=32, description="Projects imported concurrently within one run"
    )
    run_history_limit: int = Field(
        default=20, ge=1, le=500, description="Default number of runs returned by `runs list`"
    )


class LoggingConfig(BaseModel):
    """Console and file logging."""

    level: str = Field(default="WARNING", description=f"Console log level ({', '.join(LOG_LEVELS)})")
    file_level: str = Field(default="DEBUG", description="Level of the log file")
    format: Literal["json", "console"] = Field(
        default="json", description="Line format of the log file"
    )
    file: str | None = Field(default="logs/workspace_import.log", description="Log file path")
    log_payloads: bool = Field(
        default=False,
        description=(
            "Enable response payload logging at DEBUG level. "
            "WARNING: May log personal data (tokens will be redacted)."
        ),
    )

    @field_validator("level", "file_level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Log level must be one of: {', '.join(LOG_LEVELS)}")
        return level

    @field_validator("format", mode="before")
    @classmethod
    def lowercase_format(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v


class ImportBridgeConfig(BaseSettings):
    """Main import bridge configuration."""

    model_config = SettingsConfigDict(
        env_prefix="WORKSPACE_IMPORT_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    source: SourceConfig = Field(default_factory=SourceConfig, description="External API")
    credentials: CredentialsConfig = Field(
        default_factory=CredentialsConfig, description="Tenant credential configuration"
    )
    state: StateConfig = Field(default_factory=StateConfig, description="State database")
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config_from_yaml(config_path: str | Path) -> ImportBridgeConfig:
    """Load configuration from a YAML file.

    String values may reference environment variables as ``${NAME}`` or
    ``${NAME:-fallback}``, anywhere inside the string.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is empty, not a mapping, references an unset
            variable, or fails validation
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    raw = yaml.safe_load(path.read_text())
    if not raw:
        raise ValueError(f"Empty configuration file: {path}")
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")

    return ImportBridgeConfig(**_expand_env(raw))


def _expand_env(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand_env(item) for item in value]
    if isinstance(value, str):
        return _ENV_REFERENCE.sub(_env_value, value)
    return value


def _env_value(match: re.Match) -> str:
    name, fallback = match.group(1), match.group(2)
    value = os.environ.get(name)
    if value is not None:
        return value
    if fallback is not None:
        return fallback
    raise ValueError(
        f"Environment variable '{name}' not found. Set it in your environment or .env file."
    )
