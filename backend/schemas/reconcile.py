from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


FileOutcome = Literal["linked", "skipped", "conflict", "unmatched", "error", "cancelled"]


class FileResult(BaseModel):
    """Outcome for one uploaded file (the transient match candidate plus its classification)."""
    file_name: str
    normalized_key: str
    outcome: FileOutcome
    item_id: Optional[UUID] = None
    matched_on: Optional[Literal["isbn", "title"]] = None
    match_count: int = 0
    cover_url: Optional[str] = None
    message: Optional[str] = None


class ReconcileSummary(BaseModel):
    success: int = 0
    skipped: int = 0
    conflicts: int = 0
    unmatched: int = 0
    cancelled: int = 0
    details: List[str] = Field(default_factory=list)
    files: List[FileResult] = Field(default_factory=list)
