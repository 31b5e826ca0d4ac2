"""Request/response schemas for the encryption command endpoints."""

from __future__ import annotations

from pydantic import BaseModel


class PassphraseRequest(BaseModel):
    passphrase: str


class VerifyResponse(BaseModel):
    valid: bool


class EncryptionStatusResponse(BaseModel):
    enabled: bool
    can_migrate: bool


class StringPayload(BaseModel):
    data: str


class StringResult(BaseModel):
    result: str


class MigrationResponse(BaseModel):
    migrated: int
