"""
Stock ledger: the only writer of InventoryItem.quantity.

An adjustment is one transaction over two rows:
- UPDATE inventory_items SET quantity = quantity + delta (version-checked)
- INSERT stock_adjustments (delta, resulting_quantity, reason, actor)

Either both commit or neither does. If another writer committed first, the
version check fails at flush and the whole read-validate-write is retried in a
fresh session with exponential backoff, a bounded number of times.

After commit the resulting quantity is classified OK/LOW and an admin log
record is scheduled fire-and-forget.
"""

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Set, Union

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from core.admin_logger import AdminActionLogger
from core.auth import Actor
from core.config import settings
from core.errors import InsufficientStock, InvalidAdjustment, ItemNotFound, TransactionConflict
from core.thresholds import StockStatus, evaluate, resolve_threshold
from db.database import get_session_maker
from db.inventory.adjustment import StockAdjustment
from db.inventory.item import InventoryItem

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected
_RETRYABLE_SQLSTATES = {"40001", "40P01"}

_background_tasks: Set[asyncio.Task] = set()


@dataclass(frozen=True)
class AdjustmentResult:
    item_id: uuid.UUID
    entry_id: uuid.UUID
    item_title: str
    previous_quantity: int
    delta: int
    new_quantity: int
    threshold: int
    status: StockStatus


def _is_write_conflict(exc: BaseException) -> bool:
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if code in _RETRYABLE_SQLSTATES:
            return True
        # SQLite reports a concurrent writer as a lock error
        return "database is locked" in str(orig)
    return False


def validate_adjustment(delta, reason) -> tuple:
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise InvalidAdjustment("Adjustment must be a whole number")
    if delta == 0:
        raise InvalidAdjustment("Adjustment cannot be zero")
    if not isinstance(reason, str) or not reason.strip():
        raise InvalidAdjustment("A reason is required for every stock adjustment")
    return delta, reason.strip()


def _parse_item_id(item_id: Union[uuid.UUID, str]) -> uuid.UUID:
    if isinstance(item_id, uuid.UUID):
        return item_id
    try:
        return uuid.UUID(str(item_id))
    except (TypeError, ValueError):
        raise ItemNotFound(item_id)


def _spawn(coro) -> None:
    task = asyncio.get_running_loop().create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


async def wait_for_pending() -> None:
    """Wait for scheduled admin log writes (shutdown, tests)."""
    while _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)


class StockLedger:
    def __init__(
        self,
        session_maker: async_sessionmaker,
        admin_logger: Optional[AdminActionLogger] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        default_threshold: Optional[int] = None,
        source_platform: Optional[str] = None,
    ):
        self.session_maker = session_maker
        self.admin_logger = admin_logger
        self.max_attempts = max(1, max_attempts or settings.ledger_max_attempts)
        self.backoff_seconds = settings.ledger_backoff_seconds if backoff_seconds is None else backoff_seconds
        self.default_threshold = settings.low_stock_threshold if default_threshold is None else default_threshold
        self.source_platform = source_platform or settings.source_platform

    async def apply_adjustment(
        self,
        item_id: Union[uuid.UUID, str],
        delta: int,
        reason: str,
        actor: Actor,
    ) -> AdjustmentResult:
        delta, reason = validate_adjustment(delta, reason)
        item_uuid = _parse_item_id(item_id)

        attempt = 0
        while True:
            attempt += 1
            try:
                committed = await self._apply_once(item_uuid, delta, reason, actor)
                break
            except Exception as e:
                if not _is_write_conflict(e):
                    raise
                if attempt >= self.max_attempts:
                    logger.warning(
                        "Stock adjustment for item %s abandoned after %d conflicting attempts",
                        item_uuid, attempt,
                    )
                    raise TransactionConflict(item_uuid, attempt) from e
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                delay += random.uniform(0, delay)
                logger.info(
                    "Write conflict on item %s (attempt %d/%d), retrying in %.3fs",
                    item_uuid, attempt, self.max_attempts, delay,
                )
                await asyncio.sleep(delay)

        threshold = resolve_threshold(committed.pop("threshold_override"), self.default_threshold)
        result = AdjustmentResult(
            **committed,
            threshold=threshold,
            status=evaluate(committed["new_quantity"], threshold),
        )
        logger.info(
            "Stock adjusted: item=%s delta=%+d new_quantity=%d status=%s actor=%s",
            result.item_id, result.delta, result.new_quantity, result.status.value, actor.id,
        )

        if self.admin_logger is not None:
            sign = "+" if delta > 0 else ""
            _spawn(
                self.admin_logger.log_action(
                    actor,
                    "UPDATE",
                    "books_inventory",
                    result.item_id,
                    details=(
                        f'Stock adjustment for "{result.item_title}": {sign}{delta} units '
                        f"(New Total: {result.new_quantity})"
                    ),
                    new_data={"quantity": result.new_quantity, "reason": reason},
                )
            )
        return result

    async def _apply_once(self, item_id: uuid.UUID, delta: int, reason: str, actor: Actor) -> dict:
        """One read-validate-write transaction. Raises on conflict; the caller retries."""
        async with self.session_maker() as session:
            async with session.begin():
                item = await session.get(InventoryItem, item_id)
                if item is None:
                    raise ItemNotFound(item_id)

                current = int(item.quantity or 0)
                candidate = current + delta
                if candidate < 0:
                    raise InsufficientStock(item_id, current, delta)

                item.quantity = candidate
                item.updated_at = datetime.now(timezone.utc)

                entry_id = uuid.uuid4()
                session.add(
                    StockAdjustment(
                        id=entry_id,
                        item_id=item_id,
                        item_title=item.title,
                        delta=delta,
                        resulting_quantity=candidate,
                        reason=reason,
                        actor_id=actor.id,
                        actor_name=actor.display_name,
                        source_platform=self.source_platform,
                    )
                )
                committed = {
                    "item_id": item_id,
                    "entry_id": entry_id,
                    "item_title": item.title,
                    "previous_quantity": current,
                    "delta": delta,
                    "new_quantity": candidate,
                    "threshold_override": item.low_stock_threshold,
                }
        return committed

    async def list_history(self, db: AsyncSession, item_id: uuid.UUID, limit: int = 200) -> List[StockAdjustment]:
        """Adjustments for one item, newest first."""
        return await self.list_recent(db, limit=limit, item_id=item_id)

    async def list_recent(
        self, db: AsyncSession, limit: int = 200, item_id: Optional[uuid.UUID] = None
    ) -> List[StockAdjustment]:
        stmt = select(StockAdjustment)
        if item_id is not None:
            stmt = stmt.where(StockAdjustment.item_id == item_id)
        stmt = stmt.order_by(StockAdjustment.created_at.desc()).limit(limit)
        res = await db.execute(stmt)
        return list(res.scalars().all())


def get_stock_ledger(session_maker: async_sessionmaker = Depends(get_session_maker)) -> StockLedger:
    return StockLedger(session_maker, admin_logger=AdminActionLogger(session_maker))
