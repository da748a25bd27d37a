import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, Uuid

from ..database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    title = Column(String, nullable=False, index=True)
    isbn = Column(String, nullable=True, index=True)

    # Mutated only by core.ledger.StockLedger
    quantity = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=True)

    cover_ref = Column(Text, nullable=True)
    cover_url = Column(Text, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)

    # Optimistic concurrency: UPDATE ... WHERE version = <read version>
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "title": self.title,
            "isbn": self.isbn,
            "quantity": int(self.quantity or 0),
            "low_stock_threshold": self.low_stock_threshold,
            "cover_ref": self.cover_ref,
            "cover_url": self.cover_url,
            "is_active": bool(self.is_active),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
