from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel
from sqlmodel import Field, SQLModel


class BackupRecord(SQLModel, table=True):
    """Persists the result of each backup run."""
    __tablename__ = "backup_records"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = Field(default=None)
    status: str = Field(default="in_progress")  # "in_progress" | "succeeded" | "failed"
    path: str = Field(default="")                # destination file
    encrypted: bool = Field(default=False)       # True if sealed under the session key
    size_bytes: int | None = Field(default=None)
    duration_seconds: float | None = Field(default=None)
    error_message: str | None = Field(default=None)


# --- Pydantic request/response schemas ---

class BackupRecordRead(BaseModel):
    id: str
    started_at: datetime
    completed_at: datetime | None
    status: str
    path: str
    encrypted: bool
    size_bytes: int | None
    duration_seconds: float | None
    error_message: str | None

    model_config = {"from_attributes": True}


class BackupCreateRequest(BaseModel):
    path: str


class BackupRestoreRequest(BaseModel):
    path: str
    target: str


class BackupResponse(BaseModel):
    """Response after a backup or restore completes."""
    path: str
    encrypted: bool
    size_bytes: int
