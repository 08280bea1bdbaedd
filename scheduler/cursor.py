from abc import ABC, abstractmethod
from typing import Dict, Optional


class CursorStore(ABC):
    """
    Last processed tenant id per background job; None means start from the beginning.
    """

    @abstractmethod
    async def get(self, job: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, job: str, tenant_id: Optional[str]) -> None:
        ...

    async def reset(self, job: str) -> None:
        await self.set(job, None)


class InMemoryCursorStore(CursorStore):
    """Process-local cursors; a restart begins again from the first tenant."""

    def __init__(self):
        self._cursors: Dict[str, Optional[str]] = {}

    async def get(self, job: str) -> Optional[str]:
        return self._cursors.get(job)

    async def set(self, job: str, tenant_id: Optional[str]) -> None:
        self._cursors[job] = tenant_id
