"""Core building blocks shared by the refresh layer."""

from .errors import (
    ConfigError,
    PersistError,
    PolicyViolation,
    ProviderFetchError,
    SeoSyncError,
    StaleCheckError,
    TenantNotFoundError,
)

__all__ = [
    "ConfigError",
    "PersistError",
    "PolicyViolation",
    "ProviderFetchError",
    "SeoSyncError",
    "StaleCheckError",
    "TenantNotFoundError",
]
