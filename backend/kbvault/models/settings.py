"""Persisted encryption preference.

Single-row table. Records whether the user wants encryption on; it holds
no key material and does not by itself enable the session.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel
from sqlmodel import Field, SQLModel


class EncryptionSettings(SQLModel, table=True):
    __tablename__ = "encryption_settings"

    id: int = Field(default=1, primary_key=True)
    encryption_enabled: bool = Field(default=False)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class EncryptionSettingsRead(BaseModel):
    encryption_enabled: bool


class EncryptionSettingsUpdate(BaseModel):
    encryption_enabled: bool
