import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, String, Text, Uuid

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdminLog(Base):
    """Append-only record of an admin mutation anywhere in the system."""
    __tablename__ = "admin_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    action = Column(String(16), nullable=False, index=True)  # CREATE | UPDATE | DELETE
    collection_name = Column(String, nullable=False, index=True)
    document_id = Column(String, nullable=False, index=True)
    details = Column(Text, nullable=False)

    previous_data = Column(JSON, nullable=True)
    new_data = Column(JSON, nullable=True)

    actor_id = Column(String, nullable=False, index=True)
    actor_name = Column(String, nullable=True)
    source_platform = Column(String, nullable=False, default="website")

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
