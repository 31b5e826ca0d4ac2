"""FastAPI dependency injection for auth and the secure-storage services."""

from __future__ import annotations

import hmac

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from kbvault.config import get_settings
from kbvault.db import StoreLock
from kbvault.passphrase_state import PassphraseSession
from kbvault.services.backup import BackupService
from kbvault.services.migration import MigrationService
from kbvault.services.notes import SecureNoteStore
from kbvault.services.search import SearchService

_bearer_scheme = HTTPBearer(auto_error=False)


def require_auth(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> None:
    """Check the bearer token against API_TOKEN.

    No-op when API_TOKEN is empty (local-only deployment).
    """
    expected = get_settings().api_token
    if not expected:
        return
    if credentials is None or not hmac.compare_digest(
        credentials.credentials.encode("utf-8"), expected.encode("utf-8")
    ):
        raise HTTPException(status_code=401, detail="Invalid or missing API token")


def get_passphrase_session(request: Request) -> PassphraseSession:
    """Inject the process-wide PassphraseSession created at startup."""
    session = getattr(request.app.state, "passphrase_session", None)
    if session is None:
        raise HTTPException(status_code=503, detail="Passphrase session unavailable")
    return session


def get_store_lock(request: Request) -> StoreLock:
    lock = getattr(request.app.state, "store_lock", None)
    if lock is None:
        raise HTTPException(status_code=503, detail="Note store unavailable")
    return lock


def get_note_store(
    passphrase: PassphraseSession = Depends(get_passphrase_session),
    store_lock: StoreLock = Depends(get_store_lock),
) -> SecureNoteStore:
    return SecureNoteStore(passphrase, store_lock)


def get_migration_service(
    passphrase: PassphraseSession = Depends(get_passphrase_session),
    store_lock: StoreLock = Depends(get_store_lock),
) -> MigrationService:
    return MigrationService(passphrase, store_lock)


def get_backup_service(request: Request) -> BackupService:
    """Inject the BackupService singleton from app state."""
    svc = getattr(request.app.state, "backup_service", None)
    if svc is None:
        raise HTTPException(status_code=503, detail="Backup service unavailable")
    return svc


def get_search_service() -> SearchService:
    return SearchService()
