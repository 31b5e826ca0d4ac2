from __future__ import annotations

import os
import tempfile
from pathlib import Path

# Set test environment BEFORE importing kbvault modules.
# kbvault.db creates the engine at module level using get_settings().db_url,
# so we must override the env vars before any kbvault imports.
_test_tmp = tempfile.mkdtemp(prefix="kbvault-test-")
os.environ.setdefault("DATA_DIR", os.path.join(_test_tmp, "data"))
os.environ.setdefault("BACKUP_DIR", os.path.join(_test_tmp, "data", "backups"))
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("API_TOKEN", "")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

import kbvault.models  # noqa: F401
from kbvault.config import Settings
from kbvault.db import StoreLock, create_db_and_tables, get_session
from kbvault.dependencies import (
    get_backup_service,
    get_passphrase_session,
    get_store_lock,
)
from kbvault.main import app as fastapi_app
from kbvault.passphrase_state import PassphraseSession
from kbvault.services.backup import BackupService
from kbvault.services.migration import MigrationService
from kbvault.services.notes import SecureNoteStore
from kbvault.utils.crypto import derive_key


# ── Database fixtures ─────────────────────────────────────────────────


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite engine for testing.

    Uses StaticPool so every connection shares the same in-memory database.
    Recreates tables (and the FTS index) per test for full isolation.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    """Provide a fresh session per test."""
    with Session(engine) as session:
        yield session


# ── Secure-storage fixtures ───────────────────────────────────────────


@pytest.fixture(name="passphrase_session")
def passphrase_session_fixture():
    """A fresh, disabled PassphraseSession. Wiped after the test."""
    ps = PassphraseSession()
    yield ps
    ps.clear_passphrase()


@pytest.fixture(name="store_lock")
def store_lock_fixture() -> StoreLock:
    return StoreLock()


@pytest.fixture(name="note_store")
def note_store_fixture(passphrase_session, store_lock) -> SecureNoteStore:
    return SecureNoteStore(passphrase_session, store_lock)


@pytest.fixture(name="migration_service")
def migration_service_fixture(passphrase_session, store_lock) -> MigrationService:
    return MigrationService(passphrase_session, store_lock)


@pytest.fixture(name="test_settings")
def test_settings_fixture(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        data_dir=tmp_path / "data",
        backup_dir=tmp_path / "backups",
        db_url="sqlite://",
    )


@pytest.fixture(name="backup_service")
def backup_service_fixture(test_settings, passphrase_session, store_lock, engine) -> BackupService:
    return BackupService(test_settings, passphrase_session, store_lock, engine)


@pytest.fixture(name="alpha_key", scope="session")
def alpha_key_fixture() -> bytearray:
    """Key for passphrase "alpha", derived once per run (PBKDF2 is slow)."""
    return derive_key("alpha")


# ── HTTP client fixtures ──────────────────────────────────────────────


@pytest.fixture(name="client")
def client_fixture(session, passphrase_session, store_lock, backup_service):
    """FastAPI TestClient wired to the per-test DB and services."""

    def _get_session_override():
        yield session

    fastapi_app.dependency_overrides[get_session] = _get_session_override
    fastapi_app.dependency_overrides[get_passphrase_session] = lambda: passphrase_session
    fastapi_app.dependency_overrides[get_store_lock] = lambda: store_lock
    fastapi_app.dependency_overrides[get_backup_service] = lambda: backup_service
    with TestClient(fastapi_app) as client:
        yield client
    fastapi_app.dependency_overrides.clear()
