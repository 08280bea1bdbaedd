"""Refresh coordination: TTL policy, in-flight dedup, fetch+persist pipeline."""

from .cooldown import is_in_cooldown, next_allowed_time
from .policy import DEFAULT_TTL, RESOURCE_TTLS, TENANT_CLASS_TTLS, TtlTable, get_ttl
from .inflight import InFlightDeduplicator, InMemoryLeaseRegistry, LeaseRegistry
from .decision import RefreshPolicy, evaluate_refresh
from .pipeline import RefreshPipeline, SyncStep, load_tenant
from .coordinator import RefreshCoordinator, build_coordinator

__all__ = [
    "is_in_cooldown",
    "next_allowed_time",
    "DEFAULT_TTL",
    "RESOURCE_TTLS",
    "TENANT_CLASS_TTLS",
    "TtlTable",
    "get_ttl",
    "InFlightDeduplicator",
    "InMemoryLeaseRegistry",
    "LeaseRegistry",
    "RefreshPolicy",
    "evaluate_refresh",
    "RefreshPipeline",
    "SyncStep",
    "load_tenant",
    "RefreshCoordinator",
    "build_coordinator",
]
