import uuid
from sqlalchemy import Column, LargeBinary, String, Text, Uuid
from .database import Base


class Image(Base):
    """Stored image binary for the database-backed blob store."""
    __tablename__ = "images"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    path = Column(Text, nullable=False, index=True)
    data = Column(LargeBinary, nullable=False)
    content_type = Column(String(255), nullable=False)
