"""Runtime settings for the refresh coordination layer."""

from __future__ import annotations

import copy
import os
from functools import lru_cache
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from models import ResourceType, TenantClass
from seosync.core.config import Config
from seosync.core.errors import ConfigError

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./seosync.db"

# env var -> path inside the settings tree
ENV_OVERRIDES = {
    "DATABASE_URL": ("database_url",),
    "DATAFORSEO_BASE64": ("provider", "credentials_b64"),
    "DATAFORSEO_BASE_URL": ("provider", "base_url"),
    "PROVIDER_TIMEOUT_SECONDS": ("provider", "timeout_seconds"),
    "AUTO_REFRESH_ENABLED": ("scheduler", "auto_refresh_enabled"),
    "REFRESH_BATCH_SIZE": ("scheduler", "batch_size"),
    "REFRESH_INTERVAL_MINUTES": ("scheduler", "interval_minutes"),
    "REFRESH_RESOURCE_TYPE": ("scheduler", "resource_type"),
}


class ProviderSettings(BaseModel):
    base_url: str = "https://api.dataforseo.com"
    credentials_b64: Optional[str] = None
    timeout_seconds: float = Field(30.0, gt=0, le=300)
    max_retries: int = Field(1, ge=1, le=5)
    location_code: int = 2840
    language_code: str = "en"
    language_name: str = "English"
    backlinks_limit: int = Field(100, ge=1, le=1000)
    timeseries_days: int = Field(30, ge=1, le=365)
    top_pages_limit: int = Field(20, ge=1, le=1000)
    traffic_sample_limit: int = Field(100, ge=1, le=1000)
    ranked_keywords_limit: int = Field(100, ge=1, le=1000)

    @field_validator("base_url")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        return value.rstrip("/")


class TtlSettings(BaseModel):
    """TTL hours: tenant-class override, then per-resource value, then default."""

    default_hours: float = Field(24.0, ge=0)
    resources: Dict[ResourceType, float] = Field(
        default_factory=lambda: {
            ResourceType.BACKLINKS: 24.0,
            ResourceType.TOP_PAGES: 24.0,
            ResourceType.RANKED_KEYWORDS: 24.0,
            ResourceType.TRAFFIC_SOURCES: 12.0,
            ResourceType.DASHBOARD: 12.0,
        }
    )
    tenant_classes: Dict[TenantClass, float] = Field(
        default_factory=lambda: {TenantClass.PREMIUM_INTEGRATION: 48.0}
    )

    @field_validator("resources", "tenant_classes")
    @classmethod
    def _non_negative(cls, value: Dict[Any, float]) -> Dict[Any, float]:
        for key, hours in value.items():
            if hours < 0:
                raise ValueError(f"TTL hours for {getattr(key, 'value', key)} must be >= 0")
        return value


class SchedulerSettings(BaseModel):
    auto_refresh_enabled: bool = True
    batch_size: int = Field(5, ge=1, le=25)
    interval_minutes: int = Field(60, ge=10, le=1440)
    resource_type: ResourceType = ResourceType.DASHBOARD
    max_concurrency: int = Field(1, ge=1, le=10)

    @field_validator("resource_type", mode="before")
    @classmethod
    def _parse_resource(cls, value: Any) -> ResourceType:
        return ResourceType.parse(value)


class Settings(BaseModel):
    database_url: str = DEFAULT_DATABASE_URL
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    ttl: TtlSettings = Field(default_factory=TtlSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)


def _apply_env(raw: Dict[str, Any], environ: Dict[str, str]) -> Dict[str, Any]:
    for var_name, path in ENV_OVERRIDES.items():
        value = environ.get(var_name)
        if value is None or value == "":
            continue
        node = raw
        for key in path[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[path[-1]] = value
    return raw


def load_settings(
    overrides: Optional[Dict[str, Any]] = None,
    *,
    environ: Optional[Dict[str, str]] = None,
) -> Settings:
    """Build settings from YAML, then env vars, then explicit overrides."""

    raw = copy.deepcopy(Config.get("refresh", default={}))
    raw = _apply_env(raw, dict(os.environ) if environ is None else environ)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(raw.get(key), dict):
            raw[key].update(value)
        else:
            raw[key] = value

    try:
        return Settings.model_validate(raw)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ConfigError(f"Invalid settings: {exc}", field=field or None) from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""

    load_dotenv()
    return load_settings()


__all__ = [
    "ProviderSettings",
    "SchedulerSettings",
    "Settings",
    "TtlSettings",
    "get_settings",
    "load_settings",
]
