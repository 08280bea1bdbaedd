"""Identity types for refreshable third-party SEO resources."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class ResourceType(str, Enum):
    BACKLINKS = "backlinks"
    TOP_PAGES = "top_pages"
    TRAFFIC_SOURCES = "traffic_sources"
    RANKED_KEYWORDS = "ranked_keywords"
    DASHBOARD = "dashboard"

    @classmethod
    def parse(cls, value: Union[str, "ResourceType"]) -> "ResourceType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown resource type: {value!r}") from None


class TenantClass(str, Enum):
    STANDARD = "standard"
    PREMIUM_INTEGRATION = "premium_integration"

    @classmethod
    def parse(cls, value: Union[str, "TenantClass", None]) -> "TenantClass":
        if isinstance(value, cls):
            return value
        if not value:
            return cls.STANDARD
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown tenant class: {value!r}") from None


@dataclass(frozen=True, slots=True)
class ResourceKey:
    """(tenant, resource) pair; the unit of dedup and freshness lookups."""

    tenant_id: str
    resource_type: ResourceType

    def __post_init__(self) -> None:
        tenant_id = str(self.tenant_id or "").strip()
        if not tenant_id:
            raise ValueError("tenant_id must be a non-empty string")
        object.__setattr__(self, "tenant_id", tenant_id)
        object.__setattr__(self, "resource_type", ResourceType.parse(self.resource_type))

    def __str__(self) -> str:
        return f"{self.tenant_id}:{self.resource_type.value}"
