import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from core.admin_logger import AdminActionLogger, get_admin_logger
from core.auth import Actor, current_active_user, current_actor
from core.config import settings
from core.errors import (
    InsufficientStock,
    InvalidAdjustment,
    InventoryError,
    ItemNotFound,
    TransactionConflict,
)
from core.ledger import StockLedger, get_stock_ledger
from core.thresholds import evaluate, resolve_threshold
from db.database import get_async_session
from db.inventory.item import InventoryItem as InventoryItemModel
from db.users import User
from schemas.inventory import (
    AdjustmentResultOut,
    InventoryItemCreate,
    InventoryItemOut,
    InventoryItemUpdate,
    StockAdjustmentCreate,
    StockAdjustmentOut,
)

logger = logging.getLogger(__name__)

router = APIRouter()

INVENTORY_COLLECTION = "books_inventory"


def _item_out(it: InventoryItemModel) -> InventoryItemOut:
    threshold = resolve_threshold(it.low_stock_threshold)
    return InventoryItemOut(
        **it.to_schema,
        threshold=threshold,
        status=evaluate(it.quantity or 0, threshold).value,
    )


def _catalog_data(it: InventoryItemModel) -> dict:
    return {
        "title": it.title,
        "isbn": it.isbn,
        "low_stock_threshold": it.low_stock_threshold,
        "is_active": bool(it.is_active),
    }


def _http_error(e: InventoryError) -> HTTPException:
    """Map ledger failures onto HTTP responses the admin UI can explain."""
    detail = {"error": e.code, "message": e.message}
    if isinstance(e, InvalidAdjustment):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
    if isinstance(e, ItemNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    if isinstance(e, InsufficientStock):
        detail["current_quantity"] = e.current_quantity
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)
    if isinstance(e, TransactionConflict):
        detail["retryable"] = True
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to adjust stock")


async def _get_item_or_404(db: AsyncSession, item_id: UUID) -> InventoryItemModel:
    res = await db.execute(select(InventoryItemModel).where(InventoryItemModel.id == item_id))
    it = res.scalar_one_or_none()
    if not it:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    return it


async def _commit_catalog_change(db: AsyncSession, item_id: UUID) -> None:
    # Catalog edits are versioned too; a stock adjustment committed since our read wins
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        logger.info("Catalog edit of item %s lost a race with a concurrent write", item_id)
        raise _http_error(TransactionConflict(item_id, 1))


@router.get("/items", response_model=List[InventoryItemOut])
async def list_inventory_items(
    q: Optional[str] = None,
    include_inactive: bool = False,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    stmt = select(InventoryItemModel)
    if not include_inactive:
        stmt = stmt.where(InventoryItemModel.is_active == True)  # noqa: E712
    if q:
        qq = f"%{q.strip().lower()}%"
        stmt = stmt.where(
            func.lower(InventoryItemModel.title).like(qq) | func.lower(InventoryItemModel.isbn).like(qq)
        )
    res = await db.execute(stmt.order_by(func.lower(InventoryItemModel.title).asc()))
    return [_item_out(it) for it in res.scalars().all()]


@router.post("/items", response_model=InventoryItemOut, status_code=status.HTTP_201_CREATED)
async def create_inventory_item(
    payload: InventoryItemCreate,
    actor: Actor = Depends(current_actor),
    db: AsyncSession = Depends(get_async_session),
    ledger: StockLedger = Depends(get_stock_ledger),
    admin_logger: AdminActionLogger = Depends(get_admin_logger),
):
    model = InventoryItemModel(
        title=payload.title,
        isbn=payload.isbn,
        low_stock_threshold=payload.low_stock_threshold,
        quantity=0,
        is_active=True,
    )
    db.add(model)
    await db.commit()
    await db.refresh(model)

    await admin_logger.log_action(
        actor,
        "CREATE",
        INVENTORY_COLLECTION,
        model.id,
        details=f'Created inventory item "{model.title}"',
        new_data=_catalog_data(model),
    )

    # Opening stock is still a ledger adjustment so it has an audit entry
    if payload.initial_quantity:
        try:
            await ledger.apply_adjustment(model.id, payload.initial_quantity, "Restock / New Arrival", actor)
        except InventoryError as e:
            raise _http_error(e)
        await db.refresh(model)

    return _item_out(model)


@router.get("/items/{item_id}", response_model=InventoryItemOut)
async def get_inventory_item(
    item_id: UUID,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    return _item_out(await _get_item_or_404(db, item_id))


@router.patch("/items/{item_id}", response_model=InventoryItemOut)
async def update_inventory_item(
    item_id: UUID,
    payload: InventoryItemUpdate,
    actor: Actor = Depends(current_actor),
    db: AsyncSession = Depends(get_async_session),
    admin_logger: AdminActionLogger = Depends(get_admin_logger),
):
    model = await _get_item_or_404(db, item_id)
    previous = _catalog_data(model)

    data = payload.model_dump(exclude_unset=True)
    if "title" in data and data["title"] is not None:
        model.title = data["title"]
    if "isbn" in data:
        model.isbn = data["isbn"]
    if "low_stock_threshold" in data:
        model.low_stock_threshold = data["low_stock_threshold"]
    if "is_active" in data and data["is_active"] is not None:
        model.is_active = bool(data["is_active"])
    model.updated_at = datetime.now(timezone.utc)

    await _commit_catalog_change(db, item_id)
    await db.refresh(model)

    await admin_logger.log_action(
        actor,
        "UPDATE",
        INVENTORY_COLLECTION,
        model.id,
        details=f'Updated inventory item "{model.title}"',
        previous_data=previous,
        new_data=_catalog_data(model),
    )
    return _item_out(model)


@router.delete("/items/{item_id}")
async def soft_delete_inventory_item(
    item_id: UUID,
    actor: Actor = Depends(current_actor),
    db: AsyncSession = Depends(get_async_session),
    admin_logger: AdminActionLogger = Depends(get_admin_logger),
):
    # Items keep their adjustment history, so they are only deactivated
    model = await _get_item_or_404(db, item_id)
    previous = _catalog_data(model)
    model.is_active = False
    model.updated_at = datetime.now(timezone.utc)
    await _commit_catalog_change(db, item_id)

    await admin_logger.log_action(
        actor,
        "DELETE",
        INVENTORY_COLLECTION,
        item_id,
        details=f'Deactivated inventory item "{previous["title"]}"',
        previous_data=previous,
    )
    return {"ok": True}


@router.post("/adjust", response_model=AdjustmentResultOut)
async def adjust_stock(
    payload: StockAdjustmentCreate,
    actor: Actor = Depends(current_actor),
    ledger: StockLedger = Depends(get_stock_ledger),
):
    try:
        result = await ledger.apply_adjustment(payload.item_id, payload.delta, payload.reason, actor)
    except InventoryError as e:
        raise _http_error(e)
    except Exception:
        logger.exception(
            "Stock adjustment failed (attempted inventory_items/%s and stock_adjustments/[new])",
            payload.item_id,
        )
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to adjust stock")

    return AdjustmentResultOut(
        item_id=result.item_id,
        entry_id=result.entry_id,
        previous_quantity=result.previous_quantity,
        delta=result.delta,
        new_quantity=result.new_quantity,
        threshold=result.threshold,
        status=result.status.value,
    )


@router.get("/items/{item_id}/adjustments", response_model=List[StockAdjustmentOut])
async def list_item_adjustments(
    item_id: UUID,
    limit: int = Query(200, ge=1, le=1000),
    actor: Actor = Depends(current_actor),
    db: AsyncSession = Depends(get_async_session),
    ledger: StockLedger = Depends(get_stock_ledger),
):
    await _get_item_or_404(db, item_id)
    entries = await ledger.list_history(db, item_id, limit=limit)
    return [StockAdjustmentOut.model_validate(e) for e in entries]


@router.get("/adjustments", response_model=List[StockAdjustmentOut])
async def list_adjustments(
    item_id: Optional[UUID] = None,
    limit: int = Query(200, ge=1, le=1000),
    actor: Actor = Depends(current_actor),
    db: AsyncSession = Depends(get_async_session),
    ledger: StockLedger = Depends(get_stock_ledger),
):
    entries = await ledger.list_recent(db, limit=limit, item_id=item_id)
    return [StockAdjustmentOut.model_validate(e) for e in entries]


@router.get("/low-stock", response_model=List[InventoryItemOut])
async def list_low_stock(
    actor: Actor = Depends(current_actor),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Active items at or below their threshold (item override, else LOW_STOCK_THRESHOLD),
    lowest quantity first.
    """
    res = await db.execute(
        select(InventoryItemModel)
        .where(InventoryItemModel.is_active == True)  # noqa: E712
        .where(
            InventoryItemModel.quantity
            <= func.coalesce(InventoryItemModel.low_stock_threshold, settings.low_stock_threshold)
        )
        .order_by(InventoryItemModel.quantity.asc(), func.lower(InventoryItemModel.title).asc())
    )
    return [_item_out(it) for it in res.scalars().all()]
