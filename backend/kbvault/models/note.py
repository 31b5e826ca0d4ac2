from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel
from sqlmodel import Field, SQLModel

ENCRYPTED_PLACEHOLDER = "[ENCRYPTED - PASSPHRASE REQUIRED]"


class Note(SQLModel, table=True):
    __tablename__ = "notes"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    title: str
    # Plaintext body, or "" when the body lives in content_encrypted
    content: str = Field(default="")
    # base64 AES-GCM ciphertext+tag and its 12-byte nonce; both set or both NULL
    content_encrypted: str | None = Field(default=None)
    nonce: str | None = Field(default=None)
    # Plaintext copy of the body that feeds notes_fts, kept for encrypted notes too
    content_plaintext: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_encrypted(self) -> bool:
        return self.content_encrypted is not None


# --- Pydantic schemas for request/response validation ---

class NoteCreate(BaseModel):
    title: str
    content: str = ""


class NoteUpdate(BaseModel):
    title: str
    content: str


class NoteRead(BaseModel):
    id: str
    title: str
    content: str  # decrypted body, or ENCRYPTED_PLACEHOLDER
    is_encrypted: bool
    created_at: datetime
    updated_at: datetime
