import argparse
import asyncio
import csv
import sys
from pathlib import Path

"""
Seed inventory items from a CSV file (columns: title, isbn, quantity[, low_stock_threshold]).

Items are matched by ISBN (or title when no ISBN) so the script can be re-run.
Quantities are never written directly: an existing item's stock is brought to
the CSV quantity with a single "Inventory Correction" ledger adjustment.

Run:
- inside backend/: `python scripts/seed_inventory.py books.csv`
- from repo root: `python backend/scripts/seed_inventory.py books.csv`
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import logging  # noqa: E402

from sqlalchemy import func, select  # noqa: E402

from core.admin_logger import AdminActionLogger  # noqa: E402
from core.auth import SYSTEM_ACTOR  # noqa: E402
from core.ledger import StockLedger, wait_for_pending  # noqa: E402
from core.logging_config import configure_logging  # noqa: E402
from db.database import async_session_maker, create_db_and_tables  # noqa: E402
from db.inventory.item import InventoryItem  # noqa: E402

logger = logging.getLogger("seed_inventory")


def _as_int(x, default=None):
    try:
        return int(str(x).strip())
    except (TypeError, ValueError):
        return default


def read_rows(path: Path) -> list[dict]:
    with path.open(newline="", encoding="utf-8") as fh:
        rows = []
        for raw in csv.DictReader(fh):
            title = (raw.get("title") or "").strip()
            if not title:
                continue
            rows.append(
                {
                    "title": title,
                    "isbn": (raw.get("isbn") or "").strip() or None,
                    "quantity": max(_as_int(raw.get("quantity"), 0), 0),
                    "low_stock_threshold": _as_int(raw.get("low_stock_threshold")),
                }
            )
        return rows


async def seed(csv_path: Path, dry_run: bool = False):
    await create_db_and_tables()
    rows = read_rows(csv_path)
    ledger = StockLedger(async_session_maker, admin_logger=AdminActionLogger(async_session_maker))

    created = 0
    adjusted = 0
    for row in rows:
        async with async_session_maker() as session:
            stmt = select(InventoryItem)
            if row["isbn"]:
                stmt = stmt.where(InventoryItem.isbn == row["isbn"])
            else:
                stmt = stmt.where(func.lower(InventoryItem.title) == row["title"].lower())
            existing = (await session.execute(stmt.limit(1))).scalar_one_or_none()

            if existing is None:
                if dry_run:
                    logger.info("would create %r qty=%d", row["title"], row["quantity"])
                    continue
                existing = InventoryItem(
                    title=row["title"],
                    isbn=row["isbn"],
                    low_stock_threshold=row["low_stock_threshold"],
                    quantity=0,
                    is_active=True,
                )
                session.add(existing)
                await session.commit()
                created += 1
            item_id, current = existing.id, int(existing.quantity or 0)

        delta = row["quantity"] - current
        if delta == 0:
            continue
        if dry_run:
            logger.info("would adjust %r by %+d", row["title"], delta)
            continue
        reason = "Restock / New Arrival" if current == 0 else "Inventory Correction"
        await ledger.apply_adjustment(item_id, delta, reason, SYSTEM_ACTOR)
        adjusted += 1

    await wait_for_pending()
    logger.info("[seed_inventory] rows=%d created_items=%d adjustments=%d", len(rows), created, adjusted)


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("csv_path", type=Path, help="CSV with title, isbn, quantity[, low_stock_threshold]")
    parser.add_argument("--dry-run", action="store_true", help="Only report what would change")
    args = parser.parse_args()

    configure_logging()
    asyncio.run(seed(args.csv_path, dry_run=bool(args.dry_run)))
