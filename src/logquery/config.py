"""
Configuration management.

Uses Pydantic Settings for environment variable handling and validation.
A ``config.yaml`` file can provide defaults; environment variables win.
"""

import os
from functools import lru_cache
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        possible_paths = [
            "config.yaml",  # Current directory
            "../../config.yaml",  # Project root from src/logquery
        ]

        for path in possible_paths:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            return yaml.safe_load(f) or {}
    return {}


class RemoteSettings(BaseSettings):
    """Remote log search API configuration."""

    site: str = Field(default="datadoghq.com", description="API site, e.g. datadoghq.eu")
    api_key: str = Field(default="", description="API key")
    app_key: str = Field(default="", description="Application key")
    search_path: str = Field(default="/api/v2/logs/events/search", description="Log search endpoint")
    validate_path: str = Field(default="/api/v1/validate", description="Credential validation endpoint")
    timeout_seconds: int = Field(default=30, description="HTTP client timeout")

    @field_validator("site", mode="before")
    def normalize_site(cls, v: Any) -> Any:
        """Accept sites with a scheme or an ``api.`` prefix."""
        if isinstance(v, str):
            v = v.strip().removeprefix("https://").removeprefix("http://")
            v = v.removeprefix("api.").rstrip("/")
            return v or "datadoghq.com"
        return v

    @property
    def base_url(self) -> str:
        return f"https://api.{self.site}"

    @property
    def search_url(self) -> str:
        """Full log search URL."""
        return f"{self.base_url}{self.search_path}"

    @property
    def validate_url(self) -> str:
        return f"{self.base_url}{self.validate_path}"

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.app_key)

    class Config:
        env_prefix = "LOGQUERY_REMOTE_"


class FetchSettings(BaseSettings):
    """Fetch engine limits."""

    # Concurrency and retry
    max_concurrent_requests: int = Field(default=5, ge=1, description="Admission gate capacity")
    max_retries: int = Field(default=2, ge=0, description="Extra attempts after a rate limit")
    backoff_base_seconds: float = Field(default=3.0, description="First rate-limit backoff")
    backoff_max_seconds: float = Field(default=15.0, description="Backoff ceiling")
    page_timeout_seconds: float = Field(default=30.0, description="Deadline for one page, retries included")

    # Pagination
    inter_page_delay_seconds: float = Field(default=2.0, description="Delay before the second page")
    inter_page_delay_max_seconds: float = Field(default=10.0, description="Inter-page delay ceiling")
    max_pages: int = Field(default=3, ge=1, description="Pages fetched per volume query")
    max_total_records: int = Field(default=3000, ge=1, description="Records fetched per volume query")

    # Page sizes
    default_page_size: int = Field(default=100, ge=1, description="Logs page size when unset")
    max_page_size: int = Field(default=1000, ge=1, description="Largest page the API accepts")
    volume_page_size: int = Field(default=500, ge=1, description="Page size for volume fetches")

    class Config:
        env_prefix = "LOGQUERY_FETCH_"


class CacheSettings(BaseSettings):
    """Query cache freshness windows."""

    logs_ttl_seconds: float = Field(default=10.0, description="Logs result freshness")
    volume_ttl_seconds: float = Field(default=30.0, description="Volume result freshness")

    class Config:
        env_prefix = "LOGQUERY_CACHE_"


class Settings(BaseSettings):
    """Main application settings."""

    # Server configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    # Component settings
    remote: RemoteSettings = Field(default_factory=RemoteSettings)
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)

    class Config:
        env_prefix = "LOGQUERY_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with config file and env support."""
    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    return Settings()


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    mappings = {
        ("server", "host"): "LOGQUERY_HOST",
        ("server", "port"): "LOGQUERY_PORT",
        ("server", "debug"): "LOGQUERY_DEBUG",
        ("server", "log_level"): "LOGQUERY_LOG_LEVEL",
    }
    for section, model in (("remote", RemoteSettings), ("fetch", FetchSettings), ("cache", CacheSettings)):
        prefix = model.model_config["env_prefix"]
        for key in model.model_fields:
            mappings[(section, key)] = f"{prefix}{key.upper()}"

    for (section, key), env_var in mappings.items():
        if env_var not in os.environ:
            value = (config_data.get(section) or {}).get(key)
            if value is not None:
                os.environ[env_var] = str(value)


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
