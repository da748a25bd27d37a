"""
Generic admin action log.

Every admin mutation (catalog edits, stock adjustments, bulk cover sync) leaves
an immutable `admin_logs` row. Writing it is best-effort: failures are logged
and swallowed so the caller's primary operation is never affected.
"""

import logging
from typing import Any, List, Optional
from uuid import UUID

from fastapi import Depends
from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.auth import Actor
from core.config import settings
from db.admin_log import AdminLog
from db.database import get_session_maker

logger = logging.getLogger(__name__)

ADMIN_ACTIONS = ("CREATE", "UPDATE", "DELETE")


class AdminActionLogger:
    def __init__(self, session_maker: async_sessionmaker, source_platform: Optional[str] = None):
        self.session_maker = session_maker
        self.source_platform = source_platform or settings.source_platform

    async def log_action(
        self,
        actor: Optional[Actor],
        action: str,
        collection_name: str,
        document_id: Any,
        details: Optional[str] = None,
        previous_data: Any = None,
        new_data: Any = None,
    ) -> Optional[UUID]:
        """Append one admin log record. Returns its id, or None when nothing was written."""
        if actor is None:
            return None
        try:
            if action not in ADMIN_ACTIONS:
                raise ValueError(f"unknown admin action {action!r}")
            record = AdminLog(
                action=action,
                collection_name=collection_name,
                document_id=str(document_id),
                details=details or f"{action} operation on {collection_name}",
                previous_data=jsonable_encoder(previous_data) if previous_data is not None else None,
                new_data=jsonable_encoder(new_data) if new_data is not None else None,
                actor_id=actor.id,
                actor_name=actor.display_name,
                source_platform=self.source_platform,
            )
            async with self.session_maker() as session:
                async with session.begin():
                    session.add(record)
            return record.id
        except Exception:
            logger.exception(
                "Failed to log admin action %s on %s/%s", action, collection_name, document_id
            )
            return None


async def list_actions(
    db: AsyncSession,
    collection_name: Optional[str] = None,
    document_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100,
) -> List[AdminLog]:
    stmt = select(AdminLog)
    if collection_name:
        stmt = stmt.where(AdminLog.collection_name == collection_name)
    if document_id:
        stmt = stmt.where(AdminLog.document_id == document_id)
    if action:
        stmt = stmt.where(AdminLog.action == action)
    stmt = stmt.order_by(AdminLog.created_at.desc()).limit(limit)
    res = await db.execute(stmt)
    return list(res.scalars().all())


def get_admin_logger(session_maker: async_sessionmaker = Depends(get_session_maker)) -> AdminActionLogger:
    return AdminActionLogger(session_maker)
