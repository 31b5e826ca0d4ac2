from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends
from sqlmodel import Session

from kbvault.db import get_session
from kbvault.dependencies import get_backup_service, require_auth
from kbvault.models.backup import (
    BackupCreateRequest,
    BackupRecordRead,
    BackupResponse,
    BackupRestoreRequest,
)
from kbvault.services.backup import BackupService

router = APIRouter(prefix="/api/backup", tags=["backup"], dependencies=[Depends(require_auth)])


@router.post("", response_model=BackupResponse)
async def create_backup(
    body: BackupCreateRequest,
    db: Session = Depends(get_session),
    service: BackupService = Depends(get_backup_service),
) -> BackupResponse:
    """Snapshot the store to ``path``, sealed if a passphrase is set."""
    return await asyncio.to_thread(service.create_backup, db, body.path)


@router.post("/restore", response_model=BackupResponse)
async def restore_backup(
    body: BackupRestoreRequest,
    service: BackupService = Depends(get_backup_service),
) -> BackupResponse:
    return await asyncio.to_thread(service.restore_backup, body.path, body.target)


@router.get("/history", response_model=list[BackupRecordRead])
async def backup_history(
    db: Session = Depends(get_session),
    service: BackupService = Depends(get_backup_service),
) -> list[BackupRecordRead]:
    """Return recent backup records."""
    return service.get_history(db)
