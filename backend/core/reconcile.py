"""
Cover image reconciliation ("image sync").

Links a batch of uploaded image files to inventory items by file name:

1. Snapshot all items once (id, title, isbn, cover_ref); never refreshed mid-batch.
2. Key = normalize(file stem).
3. ISBN matches win outright; otherwise match on title.
4. 0 matches -> unmatched, 1 -> accepted, 2+ -> conflict (nothing written).
5. Accepted item with a cover and overwrite=False -> skipped; else upload the
   blob and set cover_ref/cover_url with a single-row update (not a ledger write).

Files are processed strictly in order. Per-file failures are counted as
unmatched and never abort the batch.
"""

import asyncio
import logging
import os
import unicodedata
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from fastapi import Depends
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.admin_logger import AdminActionLogger
from core.auth import Actor
from core.blob_store import BlobStore, content_type_for, get_blob_store
from core.config import settings
from db.database import get_session_maker
from db.inventory.item import InventoryItem
from schemas.reconcile import FileResult, ReconcileSummary

logger = logging.getLogger(__name__)

# Unicode categories dropped by normalize(): separators, punctuation, symbols, controls
_DROPPED_CATEGORIES = ("Z", "P", "S", "C")


def normalize(value: Optional[str]) -> str:
    """
    Canonical matching key: lowercase with whitespace, hyphens, underscores
    and other punctuation/symbols removed.

    >>> normalize("Hawan-Samagri_2")
    'hawansamagri2'
    """
    text = unicodedata.normalize("NFKC", value or "").lower()
    return "".join(ch for ch in text if not unicodedata.category(ch).startswith(_DROPPED_CATEGORIES))


def file_stem(file_name: str) -> str:
    base = os.path.basename(file_name or "")
    return os.path.splitext(base)[0]


@dataclass(frozen=True)
class UploadedFile:
    name: str
    data: bytes
    content_type: Optional[str] = None


@dataclass(frozen=True)
class ItemSnapshot:
    id: uuid.UUID
    title: str
    isbn: Optional[str]
    cover_ref: Optional[str]
    title_key: str
    isbn_key: str

    @property
    def has_cover(self) -> bool:
        return bool(self.cover_ref)


def find_matches(key: str, items: Sequence[ItemSnapshot]) -> tuple:
    """Return (matches, matched_on). ISBN matches take priority over title matches."""
    if not key:
        return [], None
    isbn_matches = [it for it in items if it.isbn_key and it.isbn_key == key]
    if isbn_matches:
        return isbn_matches, "isbn"
    title_matches = [it for it in items if it.title_key == key]
    return title_matches, ("title" if title_matches else None)


class Reconciler:
    def __init__(
        self,
        session_maker: async_sessionmaker,
        blob_store: BlobStore,
        admin_logger: Optional[AdminActionLogger] = None,
        cover_folder: Optional[str] = None,
        file_timeout: Optional[float] = None,
    ):
        self.session_maker = session_maker
        self.blob_store = blob_store
        self.admin_logger = admin_logger
        self.cover_folder = (cover_folder or settings.cover_folder).strip("/")
        self.file_timeout = settings.reconcile_file_timeout_seconds if file_timeout is None else file_timeout

    async def snapshot(self) -> List[ItemSnapshot]:
        async with self.session_maker() as session:
            res = await session.execute(
                select(
                    InventoryItem.id,
                    InventoryItem.title,
                    InventoryItem.isbn,
                    InventoryItem.cover_ref,
                )
            )
            rows = res.all()
        return [
            ItemSnapshot(
                id=row.id,
                title=row.title,
                isbn=row.isbn,
                cover_ref=row.cover_ref,
                title_key=normalize(row.title),
                isbn_key=normalize(row.isbn),
            )
            for row in rows
        ]

    def cover_path(self, item_id: uuid.UUID, file_name: str) -> str:
        ext = os.path.splitext(file_name)[1].lower().lstrip(".") or "jpg"
        return f"{self.cover_folder}/{item_id}.{ext}"

    async def _link_cover(self, item: ItemSnapshot, upload: UploadedFile, path: str) -> str:
        """
        Upload the new blob, point the item at it, then drop the previous blob.

        The previous cover stays intact until the item row references the new
        one; if the row update fails the new blob is removed instead.
        """
        blob = await self.blob_store.upload(path, upload.data, content_type_for(upload.name, upload.content_type))
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    # Core UPDATE: leaves the version counter alone so it never conflicts with ledger writes
                    await session.execute(
                        update(InventoryItem)
                        .where(InventoryItem.id == item.id)
                        .values(
                            cover_ref=blob.ref,
                            cover_url=blob.url,
                            updated_at=datetime.now(timezone.utc),
                        )
                    )
        except Exception:
            if blob.ref != item.cover_ref:
                await self._discard_blob(blob.ref)
            raise

        if item.cover_ref and item.cover_ref != blob.ref:
            await self._discard_blob(item.cover_ref)
        return blob.url

    async def _discard_blob(self, ref: str) -> None:
        try:
            await self.blob_store.delete(ref)
        except Exception:
            logger.warning("Could not delete unreferenced cover blob %s", ref, exc_info=True)

    async def reconcile(
        self,
        files: Sequence[UploadedFile],
        overwrite: bool = False,
        actor: Optional[Actor] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ReconcileSummary:
        summary = ReconcileSummary()
        items = await self.snapshot()
        logger.info("Reconciling %d files against %d items (overwrite=%s)", len(files), len(items), overwrite)

        for upload in files:
            key = normalize(file_stem(upload.name))

            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled += 1
                summary.details.append(f'Cancelled: "{upload.name}" not processed')
                summary.files.append(FileResult(file_name=upload.name, normalized_key=key, outcome="cancelled"))
                continue

            matches, matched_on = find_matches(key, items)

            if not matches:
                summary.unmatched += 1
                summary.details.append(f'Unmatched: "{upload.name}"')
                summary.files.append(FileResult(file_name=upload.name, normalized_key=key, outcome="unmatched"))
                continue

            if len(matches) > 1:
                summary.conflicts += 1
                summary.details.append(f'Conflict: "{upload.name}" matches {len(matches)} items')
                summary.files.append(
                    FileResult(
                        file_name=upload.name,
                        normalized_key=key,
                        outcome="conflict",
                        matched_on=matched_on,
                        match_count=len(matches),
                    )
                )
                continue

            item = matches[0]
            if item.has_cover and not overwrite:
                summary.skipped += 1
                summary.details.append(f'Skipped: "{item.title}" already has a cover')
                summary.files.append(
                    FileResult(
                        file_name=upload.name,
                        normalized_key=key,
                        outcome="skipped",
                        item_id=item.id,
                        matched_on=matched_on,
                        match_count=1,
                    )
                )
                continue

            path = self.cover_path(item.id, upload.name)
            try:
                if self.file_timeout and self.file_timeout > 0:
                    url = await asyncio.wait_for(self._link_cover(item, upload, path), timeout=self.file_timeout)
                else:
                    url = await self._link_cover(item, upload, path)
            except Exception as e:
                message = str(e) or type(e).__name__
                if isinstance(e, asyncio.TimeoutError):
                    message = f"timed out after {self.file_timeout}s"
                logger.exception(
                    "Cover link failed for %s (blob path=%s, item path=inventory_items/%s)",
                    upload.name, path, item.id,
                )
                summary.unmatched += 1
                summary.details.append(f'Error "{upload.name}": {message}')
                summary.files.append(
                    FileResult(
                        file_name=upload.name,
                        normalized_key=key,
                        outcome="error",
                        item_id=item.id,
                        matched_on=matched_on,
                        match_count=1,
                        message=message,
                    )
                )
                continue

            summary.success += 1
            summary.details.append(f'Linked: "{upload.name}" -> "{item.title}"')
            summary.files.append(
                FileResult(
                    file_name=upload.name,
                    normalized_key=key,
                    outcome="linked",
                    item_id=item.id,
                    matched_on=matched_on,
                    match_count=1,
                    cover_url=url,
                )
            )

        logger.info(
            "Reconcile finished: success=%d skipped=%d conflicts=%d unmatched=%d cancelled=%d",
            summary.success, summary.skipped, summary.conflicts, summary.unmatched, summary.cancelled,
        )

        if summary.success > 0 and self.admin_logger is not None:
            await self.admin_logger.log_action(
                actor,
                "UPDATE",
                "inventory/books",
                "bulk-image-sync",
                details=f"Bulk synced {summary.success} images for books",
            )
        return summary


def get_reconciler(
    session_maker: async_sessionmaker = Depends(get_session_maker),
    blob_store: BlobStore = Depends(get_blob_store),
) -> Reconciler:
    return Reconciler(session_maker, blob_store, admin_logger=AdminActionLogger(session_maker))
