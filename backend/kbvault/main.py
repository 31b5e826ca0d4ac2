from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import kbvault.models  # noqa: F401  register SQLModel tables

from kbvault.config import get_settings
from kbvault.db import StoreLock, create_db_and_tables, engine
from kbvault.errors import (
    AuthenticationError,
    CodecError,
    NoteNotFoundError,
    NotEnabledError,
    SecureStorageError,
)
from kbvault.passphrase_state import PassphraseSession
from kbvault.routers import backup, encryption, health, notes, search
from kbvault.services.backup import BackupService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.backup_dir.mkdir(parents=True, exist_ok=True)
    create_db_and_tables()

    # One session and one store lock per process, shared by every service
    passphrase_session = PassphraseSession()
    store_lock = StoreLock()
    app.state.passphrase_session = passphrase_session
    app.state.store_lock = store_lock
    app.state.backup_service = BackupService(settings, passphrase_session, store_lock, engine)

    yield

    # Shutdown: wipe the in-memory key
    passphrase_session.clear_passphrase()


app = FastAPI(
    title="kbvault",
    description="Local-first knowledge base with passphrase-encrypted notes",
    version="0.1.0",
    lifespan=lifespan,
)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SecureStorageError)
async def _secure_storage_error_handler(request: Request, exc: SecureStorageError) -> JSONResponse:
    if isinstance(exc, NoteNotFoundError):
        status = 404
    elif isinstance(exc, NotEnabledError):
        status = 409
    elif isinstance(exc, AuthenticationError):
        status = 400
    elif isinstance(exc, CodecError):
        status = 422
    else:
        status = 500
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


app.include_router(health.router)
app.include_router(encryption.router)
app.include_router(notes.router)
app.include_router(search.router)
app.include_router(backup.router)
