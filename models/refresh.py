"""Value objects passed between the refresh policy, pipeline and coordinator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(slots=True)
class FreshnessRecord:
    """Latest write time of a resource, derived from its dependent tables."""

    last_updated_at: Optional[datetime]
    tables: Dict[str, Optional[datetime]] = field(default_factory=dict)


@dataclass(slots=True)
class RefreshDecision:
    perform: bool
    ttl: timedelta
    reason: str
    last_updated_at: Optional[datetime] = None
    next_allowed_at: Optional[datetime] = None


@dataclass(slots=True)
class RefreshSummary:
    items_written: int
    last_refreshed_at: datetime
    warnings: List[str] = field(default_factory=list)


@dataclass(slots=True)
class RefreshOutcome:
    skipped: bool
    reason: str
    last_refreshed_at: Optional[datetime] = None
    next_allowed_at: Optional[datetime] = None
    items_written: int = 0
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skipped": self.skipped,
            "lastRefreshedAt": _iso(self.last_refreshed_at),
            "nextAllowedAt": _iso(self.next_allowed_at),
            "itemsWritten": self.items_written,
            "reason": self.reason,
            "warnings": list(self.warnings),
        }
