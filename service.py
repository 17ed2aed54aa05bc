"""
Portfolio orchestration.

Every mutation of an existing portfolio runs the same fixed sequence while
holding that owner's lock:

    merge into the mirror -> project onto sync targets -> write through -> broadcast

so broadcasting never precedes a successful merge, and back-to-back updates
to one owner are applied (and announced) in arrival order. Durable-store and
file-store calls run in the threadpool; they are the only suspension points.
"""

import copy
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as SchemaError
from starlette.concurrency import run_in_threadpool

from broadcaster import (
    AVATAR_UPLOADED,
    CUSTOMER_ROOM,
    PORTFOLIO_CHANGED,
    PORTFOLIO_CREATED,
    PORTFOLIO_DELETED,
    PORTFOLIO_UPDATED,
    EventBroadcaster,
    owner_room,
)
from config import Settings
from database import PortfolioStore
from errors import NotFound, ValidationError
from logging_config import get_logger
from mirror import ShadowMirror
from schemas import PortfolioDocument, PortfolioUpdate
from sync import Persist, SyncCoordinator, SyncResult
from uploads import FileStore, StoredFile

logger = get_logger(__name__)


def write_through(store: PortfolioStore, settings: Settings) -> Persist:
    """Durable-store writer used for both owner updates and projections."""
    async def persist(owner_id: str, fields: Dict[str, Any]) -> None:
        if settings.write_through:
            await run_in_threadpool(store.update, owner_id, fields)
    return persist


def describe_errors(exc: SchemaError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg", ""))
    return "; ".join(parts)


class PortfolioService:
    def __init__(
        self,
        store: PortfolioStore,
        mirror: ShadowMirror,
        sync: SyncCoordinator,
        broadcaster: EventBroadcaster,
        file_store: FileStore,
        settings: Settings,
    ):
        self.store = store
        self.mirror = mirror
        self.sync = sync
        self.broadcaster = broadcaster
        self.file_store = file_store
        self.settings = settings
        self._persist = write_through(store, settings)
        # Shared with the coordinator: a projection holds the target owner's lock too.
        self._locks = sync.locks

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, owner_id: str) -> Dict[str, Any]:
        return self.mirror.get(owner_id)

    def open_upload(self, filename: str):
        return self.file_store.resolve(filename)

    # ------------------------------------------------------------------
    # Create / update / delete
    # ------------------------------------------------------------------

    def parse_create(self, payload: Any) -> Dict[str, Any]:
        """Validate a new portfolio; the returned document carries the resolved ``ownerId``."""
        if not isinstance(payload, dict):
            raise ValidationError("Portfolio must be a JSON object")
        try:
            return PortfolioDocument.model_validate(payload).to_document()
        except SchemaError as e:
            raise ValidationError(describe_errors(e)) from e

    async def create(self, payload: Any) -> Dict[str, Any]:
        document = self.parse_create(payload)
        owner_id = document["ownerId"]
        async with self._locks[owner_id]:
            await run_in_threadpool(self.store.create, document)
            self.mirror.insert(document)

        logger.info("portfolio created", owner_id=owner_id)
        self.broadcaster.emit(PORTFOLIO_CREATED, {"ownerId": owner_id, "portfolio": document})
        return document

    async def update(self, owner_id: str, payload: Any) -> Dict[str, Any]:
        partial = self._parse_update(owner_id, payload)
        async with self._locks[owner_id]:
            document, _ = await self._commit(owner_id, partial)
        return document

    async def delete(self, owner_id: str) -> Dict[str, Any]:
        async with self._locks[owner_id]:
            deleted = await run_in_threadpool(self.store.delete, owner_id)
            if not deleted:
                raise NotFound("Portfolio not found")
            # Sync targets keep their copy.
            self.mirror.evict(owner_id)

        logger.info("portfolio deleted", owner_id=owner_id)
        self.broadcaster.emit(PORTFOLIO_DELETED, {"ownerId": owner_id, "message": "Portfolio deleted"})
        return {"message": "Portfolio deleted"}

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    async def upload_avatar(self, owner_id: str, filename: Optional[str], content_type: Optional[str], data: Optional[bytes]) -> Dict[str, Any]:
        async with self._locks[owner_id]:
            document = self.mirror.get(owner_id)
            stored = await self._store_file(filename, content_type, data)

            profile = dict(document.get("profile") or {})
            profile["avatarUrl"] = stored.url
            _, synced = await self._commit(owner_id, {"profile": profile})

        rooms = [owner_room(owner_id)] + [owner_room(r.target_id) for r in synced if r.ok]
        self.broadcaster.emit(AVATAR_UPLOADED, {"ownerId": owner_id, "avatarUrl": stored.url}, rooms=rooms)
        return {"avatarUrl": stored.url}

    async def upload_project_image(self, owner_id: str, filename: Optional[str], content_type: Optional[str], data: Optional[bytes], index: Optional[int] = None) -> Dict[str, Any]:
        stored = await self._store_and_attach(owner_id, "projects", index, filename, content_type, data)
        return {"imageUrl": stored.url}

    async def upload_certificate(self, owner_id: str, filename: Optional[str], content_type: Optional[str], data: Optional[bytes], index: Optional[int] = None) -> Dict[str, Any]:
        stored = await self._store_and_attach(owner_id, "certifications", index, filename, content_type, data)
        previewable = stored.is_pdf or stored.is_powerpoint
        return {
            "imageUrl": stored.url,
            "previewUrl": stored.url if previewable else None,
            "isPdf": stored.is_pdf,
            "isPowerPoint": stored.is_powerpoint,
        }

    async def _store_and_attach(self, owner_id, field, index, filename, content_type, data) -> StoredFile:
        """Store a file and, when ``index`` is given, point ``field[index].imageUrl`` at it."""
        if index is None:
            return await self._store_file(filename, content_type, data)

        async with self._locks[owner_id]:
            items = list(self.mirror.get(owner_id).get(field) or [])
            if not 0 <= index < len(items):
                raise ValidationError(f"No {field} entry at index {index}")
            stored = await self._store_file(filename, content_type, data)

            item = dict(items[index])
            item["imageUrl"] = stored.url
            items[index] = item
            await self._commit(owner_id, {field: items})
        return stored

    async def _store_file(self, filename, content_type, data) -> StoredFile:
        return await run_in_threadpool(self.file_store.save, filename, content_type, data)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _parse_update(self, owner_id: str, payload: Any) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise ValidationError("Update must be a JSON object")
        try:
            partial = PortfolioUpdate.model_validate(payload).to_partial()
        except SchemaError as e:
            raise ValidationError(describe_errors(e)) from e

        body_owner = partial.pop("ownerId", None)
        if body_owner is not None and body_owner != owner_id:
            raise ValidationError("ownerId cannot be changed")
        return partial

    async def _commit(self, owner_id: str, partial: Dict[str, Any]) -> Tuple[Dict[str, Any], List[SyncResult]]:
        """Merge, project, persist and announce. Caller holds the owner's lock."""
        document = self.mirror.put(owner_id, partial)
        synced = await self.sync.propagate(owner_id, copy.deepcopy(partial))
        await self._persist(owner_id, partial)

        logger.info("portfolio updated", owner_id=owner_id, fields=sorted(partial), synced=[r.target_id for r in synced if r.ok])
        self._announce_update(owner_id, document, synced)
        return document, synced

    def _announce_update(self, owner_id: str, document: Dict[str, Any], synced: List[SyncResult]) -> None:
        self.broadcaster.emit(
            PORTFOLIO_CHANGED,
            {"ownerId": owner_id, "portfolio": document, "updatedBy": "user"},
            rooms=[owner_room(owner_id)],
        )

        projected = [r for r in synced if r.ok]
        for result in projected:
            self.broadcaster.emit(
                PORTFOLIO_CHANGED,
                {"ownerId": result.target_id, "portfolio": result.document, "updatedBy": owner_id},
                rooms=[owner_room(result.target_id), CUSTOMER_ROOM],
            )
        if projected:
            self.broadcaster.emit(
                PORTFOLIO_UPDATED,
                {"ownerId": owner_id, "message": "Portfolio updated by admin"},
                rooms=[CUSTOMER_ROOM],
            )

        self.broadcaster.emit(PORTFOLIO_UPDATED, {"ownerId": owner_id, "message": "Portfolio updated"})
