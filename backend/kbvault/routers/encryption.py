"""Encryption command endpoints: passphrase lifecycle, string sealing, migration.

Key derivation and bulk migration run in a worker thread so the event loop
is not blocked for their duration.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlmodel import Session

from kbvault.db import get_session, store_errors
from kbvault.dependencies import get_migration_service, get_passphrase_session, require_auth
from kbvault.models.encryption import (
    EncryptionStatusResponse,
    MigrationResponse,
    PassphraseRequest,
    StringPayload,
    StringResult,
    VerifyResponse,
)
from kbvault.models.settings import (
    EncryptionSettings,
    EncryptionSettingsRead,
    EncryptionSettingsUpdate,
)
from kbvault.passphrase_state import PassphraseSession
from kbvault.services.migration import MigrationService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/encryption",
    tags=["encryption"],
    dependencies=[Depends(require_auth)],
)


def _status(passphrase: PassphraseSession) -> EncryptionStatusResponse:
    enabled = passphrase.is_enabled
    return EncryptionStatusResponse(enabled=enabled, can_migrate=enabled)


# --- Passphrase lifecycle ---


@router.post("/passphrase", response_model=EncryptionStatusResponse)
async def set_passphrase(
    body: PassphraseRequest,
    passphrase: PassphraseSession = Depends(get_passphrase_session),
) -> EncryptionStatusResponse:
    """Set the session passphrase. An empty passphrase clears it."""
    await asyncio.to_thread(passphrase.set_passphrase, body.passphrase)
    return _status(passphrase)


@router.delete("/passphrase", response_model=EncryptionStatusResponse)
async def clear_passphrase(
    passphrase: PassphraseSession = Depends(get_passphrase_session),
) -> EncryptionStatusResponse:
    passphrase.clear_passphrase()
    return _status(passphrase)


@router.post("/verify", response_model=VerifyResponse)
async def verify_passphrase(
    body: PassphraseRequest,
    passphrase: PassphraseSession = Depends(get_passphrase_session),
) -> VerifyResponse:
    valid = await asyncio.to_thread(passphrase.verify_passphrase, body.passphrase)
    return VerifyResponse(valid=valid)


@router.get("/status", response_model=EncryptionStatusResponse)
async def encryption_status(
    passphrase: PassphraseSession = Depends(get_passphrase_session),
) -> EncryptionStatusResponse:
    return _status(passphrase)


# --- String sealing ---


@router.post("/encrypt-string", response_model=StringResult)
async def encrypt_string(
    body: StringPayload,
    passphrase: PassphraseSession = Depends(get_passphrase_session),
) -> StringResult:
    """Encrypt ``data`` and return ``base64(nonce):base64(ciphertext)``."""
    return StringResult(result=passphrase.encrypt_string(body.data))


@router.post("/decrypt-string", response_model=StringResult)
async def decrypt_string(
    body: StringPayload,
    passphrase: PassphraseSession = Depends(get_passphrase_session),
) -> StringResult:
    return StringResult(result=passphrase.decrypt_string(body.data))


# --- Migration ---


@router.post("/migrate/encrypted", response_model=MigrationResponse)
async def migrate_to_encrypted(
    db: Session = Depends(get_session),
    service: MigrationService = Depends(get_migration_service),
) -> MigrationResponse:
    migrated = await asyncio.to_thread(service.migrate_to_encrypted, db)
    return MigrationResponse(migrated=migrated)


@router.post("/migrate/plaintext", response_model=MigrationResponse)
async def migrate_to_plaintext(
    db: Session = Depends(get_session),
    service: MigrationService = Depends(get_migration_service),
) -> MigrationResponse:
    migrated = await asyncio.to_thread(service.migrate_to_plaintext, db)
    return MigrationResponse(migrated=migrated)


# --- Persisted preference ---


@router.get("/settings", response_model=EncryptionSettingsRead)
async def get_encryption_settings(db: Session = Depends(get_session)) -> EncryptionSettingsRead:
    """Return the saved preference. No row means encryption was never turned on."""
    with store_errors(db):
        row = db.get(EncryptionSettings, 1)
    return EncryptionSettingsRead(encryption_enabled=row.encryption_enabled if row else False)


@router.put("/settings", response_model=EncryptionSettingsRead)
async def set_encryption_settings(
    body: EncryptionSettingsUpdate,
    db: Session = Depends(get_session),
) -> EncryptionSettingsRead:
    with store_errors(db):
        row = db.get(EncryptionSettings, 1) or EncryptionSettings(id=1)
        row.encryption_enabled = body.encryption_enabled
        row.updated_at = datetime.now(timezone.utc)
        db.add(row)
        db.commit()
    logger.info("Encryption preference set to %s", body.encryption_enabled)
    return EncryptionSettingsRead(encryption_enabled=body.encryption_enabled)
