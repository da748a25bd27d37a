from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel


AdminAction = Literal["CREATE", "UPDATE", "DELETE"]


class AdminLogOut(BaseModel):
    id: UUID
    action: AdminAction
    collection_name: str
    document_id: str
    details: str
    previous_data: Optional[Any] = None
    new_data: Optional[Any] = None
    actor_id: str
    actor_name: Optional[str] = None
    source_platform: str
    created_at: datetime

    class Config:
        from_attributes = True
