import argparse
import asyncio
import signal
import sys
from pathlib import Path

"""
Link cover images in a local directory to inventory items (same matching as POST /reconcile).

Ctrl-C stops after the file currently being processed; the remaining files
are reported as cancelled.

Run:
- from repo root: `python backend/scripts/sync_covers.py ./covers --overwrite`
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import logging  # noqa: E402

from core.admin_logger import AdminActionLogger  # noqa: E402
from core.auth import SYSTEM_ACTOR  # noqa: E402
from core.blob_store import get_blob_store  # noqa: E402
from core.logging_config import configure_logging  # noqa: E402
from core.reconcile import Reconciler, UploadedFile  # noqa: E402
from db.database import async_session_maker  # noqa: E402

logger = logging.getLogger("sync_covers")

IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".heic", ".heif"}


def collect_files(directory: Path) -> list[UploadedFile]:
    return [
        UploadedFile(name=p.name, data=p.read_bytes())
        for p in sorted(directory.iterdir())
        if p.is_file() and p.suffix.lower() in IMAGE_EXTS
    ]


async def sync(directory: Path, overwrite: bool) -> int:
    files = collect_files(directory)
    if not files:
        logger.warning("No images found in %s", directory)
        return 0

    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    except NotImplementedError:
        # Windows event loops have no signal handlers
        pass

    reconciler = Reconciler(
        async_session_maker,
        get_blob_store(async_session_maker),
        admin_logger=AdminActionLogger(async_session_maker),
    )
    summary = await reconciler.reconcile(files, overwrite=overwrite, actor=SYSTEM_ACTOR, cancel_event=cancel)

    for line in summary.details:
        print(line)
    print(
        f"[sync_covers] success={summary.success} skipped={summary.skipped} "
        f"conflicts={summary.conflicts} unmatched={summary.unmatched} cancelled={summary.cancelled}"
    )
    return summary.success


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("directory", type=Path, help="Directory of cover images named by ISBN or title")
    parser.add_argument("--overwrite", action="store_true", help="Replace covers that are already set")
    args = parser.parse_args()

    configure_logging()
    asyncio.run(sync(args.directory, overwrite=bool(args.overwrite)))
