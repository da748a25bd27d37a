import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, Uuid

from ..database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StockAdjustment(Base):
    """Immutable audit entry written in the same transaction as the quantity change."""
    __tablename__ = "stock_adjustments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    item_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("inventory_items.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    item_title = Column(String, nullable=True)

    delta = Column(Integer, nullable=False)
    resulting_quantity = Column(Integer, nullable=False)
    reason = Column(Text, nullable=False)

    actor_id = Column(String, nullable=False, index=True)
    actor_name = Column(String, nullable=True)
    source_platform = Column(String, nullable=False, default="website")

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
