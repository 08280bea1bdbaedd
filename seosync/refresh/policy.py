"""TTL policy per resource type and tenant class."""

from __future__ import annotations

from datetime import timedelta
from typing import Dict, Mapping, Optional, Union

from models import ResourceType, TenantClass

HOUR = 60 * 60

RESOURCE_TTLS: Dict[ResourceType, int] = {
    ResourceType.BACKLINKS: 24 * HOUR,
    ResourceType.TOP_PAGES: 24 * HOUR,
    ResourceType.RANKED_KEYWORDS: 24 * HOUR,
    ResourceType.TRAFFIC_SOURCES: 12 * HOUR,
    ResourceType.DASHBOARD: 12 * HOUR,
}

TENANT_CLASS_TTLS: Dict[TenantClass, int] = {
    TenantClass.PREMIUM_INTEGRATION: 48 * HOUR,
}

DEFAULT_TTL = 24 * HOUR


class TtlTable:
    """
    Resolves the TTL for a (resource, tenant class) pair.

    Lookup order: tenant-class override, per-resource TTL, default.
    A TTL of zero disables throttling for that entry.
    """

    def __init__(
        self,
        resource_ttls: Optional[Mapping[ResourceType, int]] = None,
        tenant_class_ttls: Optional[Mapping[TenantClass, int]] = None,
        default_ttl: int = DEFAULT_TTL,
    ):
        self.resource_ttls = dict(RESOURCE_TTLS if resource_ttls is None else resource_ttls)
        self.tenant_class_ttls = dict(TENANT_CLASS_TTLS if tenant_class_ttls is None else tenant_class_ttls)
        self.default_ttl = default_ttl
        for seconds in (*self.resource_ttls.values(), *self.tenant_class_ttls.values(), default_ttl):
            if seconds < 0:
                raise ValueError("TTL values must be >= 0")

    @classmethod
    def from_settings(cls, ttl_settings) -> "TtlTable":
        """Build from `TtlSettings` (hours) as loaded from settings.yaml."""
        return cls(
            resource_ttls={rt: int(hours * HOUR) for rt, hours in ttl_settings.resources.items()},
            tenant_class_ttls={tc: int(hours * HOUR) for tc, hours in ttl_settings.tenant_classes.items()},
            default_ttl=int(ttl_settings.default_hours * HOUR),
        )

    def ttl_seconds(
        self,
        resource_type: Union[str, ResourceType],
        tenant_class: Union[str, TenantClass, None] = None,
    ) -> int:
        tenant_class = TenantClass.parse(tenant_class)
        if tenant_class in self.tenant_class_ttls:
            return self.tenant_class_ttls[tenant_class]
        return self.resource_ttls.get(ResourceType.parse(resource_type), self.default_ttl)

    def ttl_for(
        self,
        resource_type: Union[str, ResourceType],
        tenant_class: Union[str, TenantClass, None] = None,
    ) -> timedelta:
        return timedelta(seconds=self.ttl_seconds(resource_type, tenant_class))


def get_ttl(resource_type: Union[str, ResourceType], tenant_class: Union[str, TenantClass, None] = None) -> timedelta:
    return TtlTable().ttl_for(resource_type, tenant_class)


__all__ = ["DEFAULT_TTL", "RESOURCE_TTLS", "TENANT_CLASS_TTLS", "TtlTable", "get_ttl"]
