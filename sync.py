"""
One-way projection of a source owner's updates onto other owners' documents.

By default the admin's portfolio projects onto the customer-facing portfolio.
Propagation is best-effort: a failing target is logged and skipped and the
source write is never rolled back.

Projections are one hop: an owner that receives projections cannot be a
source itself. Callers hold the source owner's lock and ``propagate`` takes
each target's lock, so locks are always acquired source first.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from logging_config import get_logger
from mirror import ShadowMirror

logger = get_logger(__name__)

Persist = Callable[[str, Dict[str, Any]], Awaitable[None]]


@dataclass
class SyncResult:
    target_id: str
    document: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SyncCoordinator:
    def __init__(
        self,
        mirror: ShadowMirror,
        targets: Dict[str, List[str]],
        persist: Optional[Persist] = None,
        locks: Optional[Dict[str, asyncio.Lock]] = None,
    ):
        self.mirror = mirror
        self.targets = {source: [t for t in dests if t != source] for source, dests in targets.items()}
        self.persist = persist
        self.locks: Dict[str, asyncio.Lock] = locks if locks is not None else defaultdict(asyncio.Lock)

        sources = {source for source, dests in self.targets.items() if dests}
        chained = sorted({t for dests in self.targets.values() for t in dests} & sources)
        if chained:
            raise ValueError(f"sync targets cannot also be sources: {', '.join(chained)}")

    def targets_for(self, source_id: str) -> List[str]:
        return list(self.targets.get(source_id, []))

    async def propagate(self, source_id: str, partial: Dict[str, Any]) -> List[SyncResult]:
        """Apply ``partial`` to every target of ``source_id``. Never raises."""
        results: List[SyncResult] = []
        for target_id in self.targets_for(source_id):
            logger.info("syncing portfolio", source=source_id, target=target_id, fields=sorted(partial))
            async with self.locks[target_id]:
                results.append(await self._project(source_id, target_id, partial))
        return results

    async def _project(self, source_id: str, target_id: str, partial: Dict[str, Any]) -> SyncResult:
        try:
            doc = self.mirror.put(target_id, partial)
        except Exception as e:
            logger.error("portfolio sync failed", source=source_id, target=target_id, error=str(e))
            return SyncResult(target_id, error=str(e))

        if self.persist is not None:
            try:
                await self.persist(target_id, partial)
            except Exception as e:
                # Mirror copy is already updated; the durable copy catches up on the next write.
                logger.error("portfolio sync persist failed", source=source_id, target=target_id, error=str(e))

        return SyncResult(target_id, document=doc)
