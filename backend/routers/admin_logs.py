from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from core.admin_logger import list_actions
from core.auth import Actor, current_actor
from db.database import get_async_session
from schemas.admin_logs import AdminAction, AdminLogOut

router = APIRouter()


@router.get("", response_model=List[AdminLogOut])
async def list_admin_logs(
    collection_name: Optional[str] = None,
    document_id: Optional[str] = None,
    action: Optional[AdminAction] = None,
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(current_actor),
    db: AsyncSession = Depends(get_async_session),
):
    """Most recent admin actions first."""
    rows = await list_actions(
        db,
        collection_name=collection_name,
        document_id=document_id,
        action=action,
        limit=limit,
    )
    return [AdminLogOut.model_validate(r) for r in rows]
