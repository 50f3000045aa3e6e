import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

from models.responses import UnifiedReport

logger = logging.getLogger(__name__)


class ReportCache(Protocol):
    async def get(self, handle: str) -> Optional[UnifiedReport]:
        ...

    async def set(self, handle: str, report: UnifiedReport, ttl: float) -> None:
        ...


class InMemoryReportCache:
    """
    Process-local report cache keyed by normalized handle.

    Concurrent writes for the same handle are last-writer-wins. Expired
    entries are dropped when they are next read.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, UnifiedReport]] = {}
        self._lock = asyncio.Lock()

    async def get(self, handle: str) -> Optional[UnifiedReport]:
        async with self._lock:
            entry = self._entries.get(handle)
            if entry is None:
                return None
            expires_at, report = entry
            if self._clock() >= expires_at:
                del self._entries[handle]
                logger.debug(f"Cache entry for '{handle}' expired")
                return None
            return report

    async def set(self, handle: str, report: UnifiedReport, ttl: float) -> None:
        if ttl <= 0:
            return
        async with self._lock:
            self._entries[handle] = (self._clock() + ttl, report)

    def __len__(self) -> int:
        return len(self._entries)
