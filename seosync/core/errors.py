"""
Refresh-layer error hierarchy for clear classification in logs and API responses.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SeoSyncError(Exception):
    """Base class for all refresh coordination errors."""

    def __init__(
        self,
        message: str,
        *,
        tenant_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        phase: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.tenant_id = tenant_id
        self.resource_type = getattr(resource_type, "value", resource_type)
        self.phase = phase
        self.details = details or {}

    def as_dict(self) -> Dict[str, Any]:
        """Serializable representation for logs/API."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "tenant_id": self.tenant_id,
            "resource_type": self.resource_type,
            "phase": self.phase,
            "details": self.details,
        }


class StaleCheckError(SeoSyncError):
    """Raised when the store cannot be queried for freshness or tenant data."""

    def __init__(self, message: str, **kwargs) -> None:
        kwargs.setdefault("phase", "stale_check")
        super().__init__(message, **kwargs)


class ProviderFetchError(SeoSyncError):
    """Raised when a provider call times out, fails, or returns a malformed payload."""

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ) -> None:
        kwargs.setdefault("phase", "fetch")
        super().__init__(message, **kwargs)
        self.provider = provider
        self.status_code = status_code
        if provider is not None:
            self.details["provider"] = provider
        if status_code is not None:
            self.details["status_code"] = status_code


class PersistError(SeoSyncError):
    """Raised when writing refreshed rows to the store fails."""

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        **kwargs,
    ) -> None:
        kwargs.setdefault("phase", "persist")
        super().__init__(message, **kwargs)
        self.operation = operation
        if operation is not None:
            self.details["operation"] = operation


class PolicyViolation(SeoSyncError):
    """Raised when a forced refresh arrives without authorization."""

    def __init__(self, message: str, **kwargs) -> None:
        kwargs.setdefault("phase", "policy")
        super().__init__(message, **kwargs)


class TenantNotFoundError(SeoSyncError):
    """Raised when the tenant does not exist or has no domain configured."""

    def __init__(self, message: str, **kwargs) -> None:
        kwargs.setdefault("phase", "tenant_lookup")
        super().__init__(message, **kwargs)


class ConfigError(SeoSyncError):
    """Raised when settings fail validation."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        **kwargs,
    ) -> None:
        kwargs.setdefault("phase", "config")
        super().__init__(message, **kwargs)
        self.field = field
        if field is not None:
            self.details["field"] = field


__all__ = [
    "SeoSyncError",
    "StaleCheckError",
    "ProviderFetchError",
    "PersistError",
    "PolicyViolation",
    "TenantNotFoundError",
    "ConfigError",
]
