"""Model exports for the SEO refresh backend."""

from .refresh import FreshnessRecord, RefreshDecision, RefreshOutcome, RefreshSummary
from .resource import ResourceKey, ResourceType, TenantClass
from .tenant import EXCLUDED_STATUSES, TenantRecord

__all__ = [
    "EXCLUDED_STATUSES",
    "FreshnessRecord",
    "RefreshDecision",
    "RefreshOutcome",
    "RefreshSummary",
    "ResourceKey",
    "ResourceType",
    "TenantClass",
    "TenantRecord",
]
