"""Tenant snapshot used by the refresh layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from models.resource import TenantClass

# clients with these statuses are never auto-refreshed
EXCLUDED_STATUSES = frozenset({"ARCHIVED", "SUSPENDED", "REJECTED"})


@dataclass(slots=True)
class TenantRecord:
    id: str
    name: str
    domain: Optional[str] = None
    tenant_class: TenantClass = TenantClass.STANDARD
    status: str = "ACTIVE"
    auto_refresh_enabled: bool = True

    def __post_init__(self) -> None:
        self.tenant_class = TenantClass.parse(self.tenant_class)
        self.status = (self.status or "ACTIVE").upper()

    @classmethod
    def from_row(cls, row: Any) -> "TenantRecord":
        """Build from a `clients` ORM row."""
        return cls(
            id=row.id,
            name=row.name,
            domain=row.domain,
            tenant_class=row.tenant_class,
            status=row.status,
            auto_refresh_enabled=bool(row.auto_refresh_enabled),
        )
