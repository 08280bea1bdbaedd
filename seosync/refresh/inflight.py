"""
In-flight deduplication of refresh operations.

At most one fetch+persist cycle runs per ResourceKey; concurrent callers
attach to the running task and receive its result or exception.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from models import ResourceKey
from seosync.utils.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class LeaseRegistry(ABC):
    """Maps a ResourceKey to the task currently refreshing it."""

    @abstractmethod
    def get(self, key: ResourceKey) -> Optional[asyncio.Task]:
        ...

    @abstractmethod
    def put(self, key: ResourceKey, task: asyncio.Task) -> None:
        ...

    @abstractmethod
    def remove(self, key: ResourceKey, task: asyncio.Task) -> bool:
        """Drop the lease only if `key` still maps to `task`."""

    @abstractmethod
    def keys(self) -> List[ResourceKey]:
        ...

    @abstractmethod
    def tasks(self) -> List[asyncio.Task]:
        ...


class InMemoryLeaseRegistry(LeaseRegistry):
    def __init__(self) -> None:
        self._leases: Dict[ResourceKey, asyncio.Task] = {}

    def get(self, key: ResourceKey) -> Optional[asyncio.Task]:
        return self._leases.get(key)

    def put(self, key: ResourceKey, task: asyncio.Task) -> None:
        self._leases[key] = task

    def remove(self, key: ResourceKey, task: asyncio.Task) -> bool:
        if self._leases.get(key) is task:
            del self._leases[key]
            return True
        return False

    def keys(self) -> List[ResourceKey]:
        return list(self._leases)

    def tasks(self) -> List[asyncio.Task]:
        return list(self._leases.values())

    def __len__(self) -> int:
        return len(self._leases)


class InFlightDeduplicator:
    def __init__(self, registry: Optional[LeaseRegistry] = None):
        self.registry = registry or InMemoryLeaseRegistry()

    async def run_exclusive(self, key: ResourceKey, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run `operation` under a lease for `key`, or await the lease already held.

        Waiters go through asyncio.shield, so cancelling one caller never
        cancels the shared operation.
        """
        task = self.registry.get(key)
        if task is None:
            task = asyncio.create_task(self._run_lease(key, operation), name=f"refresh:{key}")
            self.registry.put(key, task)
            log.debug(f"[lease] acquired {key}")
        else:
            log.info(f"[lease] attached to in-flight refresh {key}")
        return await asyncio.shield(task)

    async def _run_lease(self, key: ResourceKey, operation: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await operation()
        finally:
            if self.registry.remove(key, asyncio.current_task()):
                log.debug(f"[lease] released {key}")

    def in_flight(self, key: ResourceKey) -> bool:
        return self.registry.get(key) is not None

    def active_keys(self) -> List[ResourceKey]:
        return self.registry.keys()

    async def wait_idle(self) -> None:
        """Wait until no lease is held; used on shutdown."""
        while True:
            tasks = self.registry.tasks()
            if not tasks:
                return
            log.info(f"Waiting for {len(tasks)} in-flight refresh(es) to finish")
            await asyncio.wait(tasks)


__all__ = ["InFlightDeduplicator", "InMemoryLeaseRegistry", "LeaseRegistry"]
