"""Cover reconciliation: classification, idempotence, failure isolation."""
import asyncio
import uuid

import pytest
from sqlalchemy import select

from core.blob_store import BlobRef, BlobStore
from core.errors import StorageUploadError
from core.reconcile import Reconciler, UploadedFile
from db.image import Image

from conftest import create_item, get_item, list_admin_logs

JPEG = b"\xff\xd8\xff\xe0fake-jpeg"


def _file(name, data=JPEG, content_type="image/jpeg"):
    return UploadedFile(name=name, data=data, content_type=content_type)


class FailingBlobStore(BlobStore):
    def __init__(self, inner, fail_for):
        self.inner = inner
        self.fail_for = fail_for

    async def upload(self, path, data, content_type):
        if any(path.endswith(f"{item_id}.jpg") for item_id in self.fail_for):
            raise StorageUploadError(path, "bucket unavailable")
        return await self.inner.upload(path, data, content_type)


class SlowBlobStore(BlobStore):
    async def upload(self, path, data, content_type):
        await asyncio.sleep(5)
        return BlobRef(ref=path, url=f"https://cdn.example/{path}")


@pytest.fixture
def reconciler(session_maker, blob_store, admin_logger):
    return Reconciler(session_maker, blob_store, admin_logger=admin_logger, cover_folder="covers", file_timeout=5)


async def test_unique_match_links_cover(reconciler, session_maker, actor):
    item_id = await create_item(session_maker, title="Hawan Samagri 2")

    summary = await reconciler.reconcile([_file("Hawan-Samagri_2.jpg")], actor=actor)

    assert summary.success == 1
    assert summary.details == ['Linked: "Hawan-Samagri_2.jpg" -> "Hawan Samagri 2"']
    result = summary.files[0]
    assert result.outcome == "linked"
    assert result.item_id == item_id
    assert result.matched_on == "title"

    item = await get_item(session_maker, item_id)
    assert item.cover_ref
    assert item.cover_url == f"/images/serve/{item.cover_ref}"
    assert result.cover_url == item.cover_url

    async with session_maker() as db:
        img = (await db.execute(select(Image))).scalar_one()
    assert img.path == f"covers/{item_id}.jpg"
    assert img.content_type == "image/jpeg"
    assert bytes(img.data) == JPEG


async def test_cover_link_does_not_touch_quantity_or_version(reconciler, session_maker):
    item_id = await create_item(session_maker, title="Gita", quantity=7)
    before = await get_item(session_maker, item_id)

    await reconciler.reconcile([_file("gita.jpg")])

    after = await get_item(session_maker, item_id)
    assert after.quantity == 7
    assert after.version == before.version


async def test_ambiguous_match_is_conflict(reconciler, session_maker):
    a = await create_item(session_maker, title="Gita")
    b = await create_item(session_maker, title="GITA!")

    summary = await reconciler.reconcile([_file("gita.jpg")])

    assert summary.conflicts == 1
    assert summary.success == 0
    assert summary.details == ['Conflict: "gita.jpg" matches 2 items']
    assert summary.files[0].match_count == 2
    assert (await get_item(session_maker, a)).cover_ref is None
    assert (await get_item(session_maker, b)).cover_ref is None


async def test_isbn_match_wins_over_title(reconciler, session_maker):
    by_isbn = await create_item(session_maker, title="Sri Isopanisad", isbn="978-0-89213-138-4")
    by_title = await create_item(session_maker, title="9780892131384")

    summary = await reconciler.reconcile([_file("9780892131384.png", content_type=None)])

    assert summary.success == 1
    assert summary.files[0].matched_on == "isbn"
    assert summary.files[0].item_id == by_isbn
    assert (await get_item(session_maker, by_title)).cover_ref is None


async def test_existing_cover_skipped_unless_overwrite(reconciler, session_maker):
    item_id = await create_item(session_maker, title="Gita", cover_ref="old-ref")

    summary = await reconciler.reconcile([_file("gita.jpg")], overwrite=False)
    assert summary.skipped == 1
    assert summary.details == ['Skipped: "Gita" already has a cover']
    assert (await get_item(session_maker, item_id)).cover_ref == "old-ref"

    summary = await reconciler.reconcile([_file("gita.jpg")], overwrite=True)
    assert summary.success == 1
    assert (await get_item(session_maker, item_id)).cover_ref != "old-ref"


async def test_second_run_skips_already_linked(reconciler, session_maker):
    await create_item(session_maker, title="Gita")

    first = await reconciler.reconcile([_file("gita.jpg")])
    second = await reconciler.reconcile([_file("gita.jpg")])

    assert first.success == 1
    assert second.success == 0
    assert second.skipped == 1


async def test_batch_counts(reconciler, session_maker):
    for title in ("Gita", "Isopanisad", "Nectar of Devotion", "Krsna Book", "Caitanya Caritamrta", "Bhagavatam"):
        await create_item(session_maker, title=title)
    for title in ("Japa Mala", "Japa-Mala", "Tulasi Beads", "tulasi beads"):
        await create_item(session_maker, title=title)

    files = [
        _file("gita.jpg"),
        _file("Isopanisad.jpg"),
        _file("nectar_of_devotion.jpg"),
        _file("KRSNA-BOOK.jpg"),
        _file("caitanya caritamrta.jpg"),
        _file("bhagavatam.jpg"),
        _file("japamala.jpg"),
        _file("tulasi_beads.jpg"),
        _file("unknown-1.jpg"),
        _file("unknown-2.jpg"),
    ]
    summary = await reconciler.reconcile(files)

    assert (summary.success, summary.conflicts, summary.unmatched, summary.skipped) == (6, 2, 2, 0)
    assert len(summary.files) == 10
    assert [f.file_name for f in summary.files] == [f.name for f in files]


async def test_upload_failure_counted_as_unmatched_and_batch_continues(session_maker, blob_store):
    broken = await create_item(session_maker, title="Gita")
    fine = await create_item(session_maker, title="Isopanisad")
    reconciler = Reconciler(
        session_maker, FailingBlobStore(blob_store, fail_for=[broken]), cover_folder="covers"
    )

    summary = await reconciler.reconcile([_file("gita.jpg"), _file("isopanisad.jpg")])

    assert summary.unmatched == 1
    assert summary.success == 1
    assert summary.files[0].outcome == "error"
    assert summary.details[0].startswith('Error "gita.jpg": Failed to upload covers/')
    assert (await get_item(session_maker, broken)).cover_ref is None
    assert (await get_item(session_maker, fine)).cover_ref


async def test_empty_file_is_an_error(reconciler, session_maker):
    item_id = await create_item(session_maker, title="Gita")
    summary = await reconciler.reconcile([_file("gita.jpg", data=b"")])
    assert summary.unmatched == 1
    assert summary.files[0].outcome == "error"
    assert (await get_item(session_maker, item_id)).cover_ref is None


async def test_slow_upload_times_out(session_maker):
    item_id = await create_item(session_maker, title="Gita")
    reconciler = Reconciler(session_maker, SlowBlobStore(), file_timeout=0.05)

    summary = await reconciler.reconcile([_file("gita.jpg")])

    assert summary.unmatched == 1
    assert summary.files[0].message == "timed out after 0.05s"
    assert (await get_item(session_maker, item_id)).cover_ref is None


async def test_cancelled_batch_reports_remaining_files(reconciler, session_maker):
    await create_item(session_maker, title="Gita")
    cancel = asyncio.Event()
    cancel.set()

    summary = await reconciler.reconcile([_file("gita.jpg"), _file("other.jpg")], cancel_event=cancel)

    assert summary.cancelled == 2
    assert summary.success == 0
    assert summary.details[1] == 'Cancelled: "other.jpg" not processed'


async def test_bulk_sync_is_logged_once(reconciler, session_maker, actor):
    await create_item(session_maker, title="Gita")
    await create_item(session_maker, title="Isopanisad")

    await reconciler.reconcile([_file("gita.jpg"), _file("isopanisad.jpg")], actor=actor)

    logs = await list_admin_logs(session_maker)
    assert len(logs) == 1
    assert logs[0].collection_name == "inventory/books"
    assert logs[0].document_id == "bulk-image-sync"
    assert logs[0].details == "Bulk synced 2 images for books"


async def test_nothing_logged_without_success(reconciler, session_maker, actor):
    await reconciler.reconcile([_file("nothing.jpg")], actor=actor)
    assert await list_admin_logs(session_maker) == []


class SnapshotOnlySessionMaker:
    """Serves the inventory snapshot, then fails every later session (the cover update)."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls > 1:
            raise RuntimeError("db write failed")
        return self.inner()


async def _image_ids(session_maker):
    async with session_maker() as db:
        return {str(i) for i in (await db.execute(select(Image.id))).scalars().all()}


async def test_failed_overwrite_keeps_existing_cover(reconciler, session_maker, blob_store):
    item_id = await create_item(session_maker, title="Gita")
    await reconciler.reconcile([_file("gita.jpg")])
    old = await get_item(session_maker, item_id)

    failing = Reconciler(SnapshotOnlySessionMaker(session_maker), blob_store, cover_folder="covers")
    summary = await failing.reconcile([_file("gita.jpg", data=b"\xff\xd8new-cover")], overwrite=True)

    assert summary.unmatched == 1
    assert summary.details == ['Error "gita.jpg": db write failed']
    item = await get_item(session_maker, item_id)
    assert item.cover_ref == old.cover_ref
    assert item.cover_url == old.cover_url
    # the live cover still resolves and the rejected upload left nothing behind
    assert await _image_ids(session_maker) == {old.cover_ref}


async def test_overwrite_removes_previous_blob(reconciler, session_maker):
    item_id = await create_item(session_maker, title="Gita")
    await reconciler.reconcile([_file("gita.jpg")])
    old_ref = (await get_item(session_maker, item_id)).cover_ref

    summary = await reconciler.reconcile([_file("gita.png", content_type="image/png")], overwrite=True)

    assert summary.success == 1
    new_ref = (await get_item(session_maker, item_id)).cover_ref
    assert new_ref != old_ref
    assert await _image_ids(session_maker) == {new_ref}


async def test_overwrite_same_path_keeps_single_blob(reconciler, session_maker):
    item_id = await create_item(session_maker, title="Gita")
    await reconciler.reconcile([_file("gita.jpg")])
    await reconciler.reconcile([_file("gita.jpg", data=b"\xff\xd8second")], overwrite=True)

    item = await get_item(session_maker, item_id)
    assert await _image_ids(session_maker) == {item.cover_ref}
    async with session_maker() as db:
        img = await db.get(Image, uuid.UUID(item.cover_ref))
    assert bytes(img.data) == b"\xff\xd8second"
