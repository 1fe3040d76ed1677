"""
Application configuration resolved from layered sources.

Settings are read once at startup from, in increasing precedence:

1. ``configuration/base.yaml``
2. ``configuration/<environment>.yaml`` (``APP_ENVIRONMENT``, default ``local``)
3. ``APP_``-prefixed environment variables, ``__`` as the nesting delimiter
   (e.g. ``APP_DATABASE__PORT=5433``)

Uses pydantic-settings for type-safe validation of the merged result.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict, SettingsError
from sqlalchemy.engine import URL

ENVIRONMENT_VARIABLE = "APP_ENVIRONMENT"
DEFAULT_CONFIG_DIR = "configuration"


class ConfigError(Exception):
    """Raised when configuration cannot be resolved. Always fatal at startup."""


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

class Environment(str, Enum):
    """Deployment environment selecting the overlay file."""

    LOCAL = "local"
    PRODUCTION = "production"

    @classmethod
    def parse(cls, raw: str) -> "Environment":
        """Parse *raw* case-insensitively, raising ConfigError on unknown values."""
        try:
            return cls(raw.strip().lower())
        except ValueError:
            raise ConfigError(
                f"{raw} is not a supported environment. "
                "Use either `local` or `production`."
            ) from None


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------

class ServerSettings(BaseModel):
    """Listener address."""

    model_config = {"frozen": True, "hide_input_in_errors": True}

    host: str
    port: int = Field(..., ge=0, le=65535)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def with_random_port(self) -> "ServerSettings":
        """Same host, port 0 so the OS assigns whatever is available."""
        return self.model_copy(update={"port": 0})


class DatabaseUser(BaseModel):
    model_config = {"frozen": True, "hide_input_in_errors": True}

    name: str
    password: SecretStr


class DatabaseSettings(BaseModel):
    """Connection parameters for the Postgres store."""

    model_config = {"frozen": True, "hide_input_in_errors": True}

    name: str
    host: str
    port: int = Field(..., ge=0, le=65535)
    user: DatabaseUser
    maintenance_name: str = "postgres"
    timeout_seconds: float = Field(default=10.0, gt=0)

    def connection_url(self, database: str | None = None) -> URL:
        """
        Build the asyncpg connection URL for *database* (defaults to ``name``).

        ``str()`` and ``repr()`` of the returned URL mask the password.
        """
        return URL.create(
            "postgresql+asyncpg",
            username=self.user.name,
            password=self.user.password.get_secret_value(),
            host=self.host,
            port=self.port,
            database=database or self.name,
        )

    def maintenance_url(self) -> URL:
        """URL of the database used to issue ``CREATE DATABASE``."""
        return self.connection_url(self.maintenance_name)


class Settings(BaseSettings):
    """Immutable application settings."""

    server: ServerSettings
    database: DatabaseSettings

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_nested_delimiter="__",
        frozen=True,
        hide_input_in_errors=True,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Earlier sources win: environment variables override the merged files.
        return env_settings, init_settings


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def current_environment() -> Environment:
    """Read ``APP_ENVIRONMENT``; unset or empty means local."""
    raw = os.getenv(ENVIRONMENT_VARIABLE, "")
    if not raw.strip():
        return Environment.LOCAL
    return Environment.parse(raw)


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        with path.open(encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"Configuration file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Configuration file {path} is not valid YAML") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping at the top level")
    return data


def _merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_configuration(config_dir: str | Path | None = None) -> Settings:
    """
    Resolve the application settings.

    Args:
        config_dir: Directory holding the YAML files. Defaults to
            ``<cwd>/configuration``.

    Returns:
        The validated, immutable Settings.

    Raises:
        ConfigError: On an invalid environment name, missing or malformed
            files, or values that fail validation.
    """
    directory = Path(config_dir) if config_dir is not None else Path.cwd() / DEFAULT_CONFIG_DIR
    environment = current_environment()

    sources = [
        directory / "base.yaml",
        directory / f"{environment.value}.yaml",
    ]
    merged: dict[str, Any] = {}
    for source in sources:
        merged = _merge(merged, _load_yaml(source))

    try:
        return Settings(**merged)
    except (ValidationError, SettingsError) as exc:
        raise ConfigError(f"Invalid configuration for environment '{environment.value}'") from exc
