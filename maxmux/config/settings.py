"""Application settings loaded from the environment and an optional YAML file."""

import os
from functools import lru_cache
from typing import Annotated

import httpx
import yaml
from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    SettingsError,
    YamlConfigSettingsSource,
)

from maxmux.errors import ConfigurationError

# Set by `maxmux --config`; an explicit path must exist, the default may not.
CONFIG_PATH_ENV = "MAXMUX_CONFIG"
DEFAULT_CONFIG_PATH = "config.yaml"


def config_path() -> str:
    return os.environ.get(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH)


class Settings(BaseSettings):
    # Listener
    host: str = "0.0.0.0"
    port: int = 4000

    # Upstream API and the shared OAuth token injected into every request
    upstream: str = "https://api.anthropic.com"
    oauth_token: str = ""
    upstream_connect_timeout: float = 10.0
    upstream_read_timeout: float | None = None  # None = no limit, SSE streams can idle

    # Virtual keys handed out to clients: YAML list or comma-separated env var
    virtual_keys: Annotated[list[str], NoDecode] = []

    # Logging
    log_level: str = "INFO"
    audit_log_file: str = ""  # Empty = stdout only

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        yaml_settings = YamlConfigSettingsSource(settings_cls, yaml_file=config_path())
        return init_settings, env_settings, dotenv_settings, yaml_settings, file_secret_settings

    @field_validator("virtual_keys", mode="before")
    @classmethod
    def _split_virtual_keys(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [k.strip() for k in value.split(",") if k.strip()]
        return value

    @field_validator("upstream")
    @classmethod
    def _check_upstream(cls, value: str) -> str:
        try:
            url = httpx.URL(value)
        except httpx.InvalidURL as exc:
            raise ValueError(f"invalid upstream URL {value!r}: {exc}") from exc
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"upstream must be an absolute http(s) URL, got {value!r}")
        return value

    @model_validator(mode="after")
    def _require_oauth_token(self) -> "Settings":
        if not self.oauth_token:
            raise ValueError("oauth_token is required")
        return self

    @property
    def virtual_key_set(self) -> frozenset[str]:
        """Accepted keys as a set; duplicates in the config are harmless."""
        return frozenset(self.virtual_keys)


@lru_cache
def get_settings() -> Settings:
    """Load the settings snapshot once. Every failure surfaces as ConfigurationError."""
    path = config_path()
    if CONFIG_PATH_ENV in os.environ and not os.path.isfile(path):
        raise ConfigurationError(f"config file not found: {path}")

    try:
        return Settings()
    except (ValidationError, SettingsError) as exc:
        raise ConfigurationError(f"invalid configuration: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"parsing config {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigurationError(f"reading config {path}: {exc}") from exc
