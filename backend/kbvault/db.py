from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Generator, Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from kbvault.config import get_settings
from kbvault.errors import StoreError

logger = logging.getLogger(__name__)


@event.listens_for(Engine, "connect")
def _set_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


engine = create_engine(
    get_settings().db_url,
    echo=False,
    connect_args={"check_same_thread": False},
)


class StoreLock:
    """Serializes every logical operation that touches the note store.

    One instance is shared by the note store, migration and backup services.
    Re-entrant so a service method may call another under the same hold.
    Always taken before the PassphraseSession lock, never after.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

    def __enter__(self) -> StoreLock:
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self._lock.release()


# Full-text index over title + shadow plaintext. content_encrypted is never indexed.
_FTS_DDL = [
    "CREATE VIRTUAL TABLE IF NOT EXISTS notes_fts USING fts5("
    "  note_id UNINDEXED,"
    "  title,"
    "  content_plaintext"
    ")",
    "CREATE TRIGGER IF NOT EXISTS notes_ai AFTER INSERT ON notes BEGIN"
    "  INSERT INTO notes_fts(note_id, title, content_plaintext)"
    "  VALUES (new.id, new.title, coalesce(new.content_plaintext, ''));"
    " END",
    "CREATE TRIGGER IF NOT EXISTS notes_ad AFTER DELETE ON notes BEGIN"
    "  DELETE FROM notes_fts WHERE note_id = old.id;"
    " END",
    "CREATE TRIGGER IF NOT EXISTS notes_au AFTER UPDATE ON notes BEGIN"
    "  DELETE FROM notes_fts WHERE note_id = old.id;"
    "  INSERT INTO notes_fts(note_id, title, content_plaintext)"
    "  VALUES (new.id, new.title, coalesce(new.content_plaintext, ''));"
    " END",
]


def create_db_and_tables(eng: Engine | None = None) -> None:
    eng = eng or engine
    SQLModel.metadata.create_all(eng)
    _run_migrations(eng)


def _run_migrations(eng: Engine) -> None:
    """Lightweight forward-only migrations for schema additions."""
    insp = inspect(eng)
    columns = [c["name"] for c in insp.get_columns("notes")]

    # Encryption columns for databases created before encryption existed
    for col_name in ("content_encrypted", "nonce", "content_plaintext"):
        if col_name not in columns:
            with eng.begin() as conn:
                conn.execute(text(f"ALTER TABLE notes ADD COLUMN {col_name} TEXT"))

    with eng.begin() as conn:
        # Plaintext rows carry their body in the shadow field as well
        conn.execute(text(
            "UPDATE notes SET content_plaintext = content "
            "WHERE content_plaintext IS NULL AND content_encrypted IS NULL"
        ))
        for ddl in _FTS_DDL:
            conn.execute(text(ddl))
        # Index rows that predate the FTS table
        conn.execute(text(
            "INSERT INTO notes_fts(note_id, title, content_plaintext) "
            "SELECT id, title, coalesce(content_plaintext, '') FROM notes "
            "WHERE id NOT IN (SELECT note_id FROM notes_fts)"
        ))


def snapshot_to(path: Path, eng: Engine | None = None) -> None:
    """Write a consistent copy of the whole database to ``path``.

    Uses the SQLite online backup API, which does not block other readers
    or writers for the duration of the copy.
    """
    eng = eng or engine
    raw = eng.raw_connection()
    try:
        dst = sqlite3.connect(str(path))
        try:
            raw.driver_connection.backup(dst)
        finally:
            dst.close()
    finally:
        raw.close()


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


@contextmanager
def store_errors(db: Session | None = None) -> Iterator[None]:
    """Translate SQLAlchemy failures into StoreError, rolling back ``db``."""
    try:
        yield
    except SQLAlchemyError as exc:
        if db is not None:
            db.rollback()
        raise StoreError(f"Database error: {exc}") from exc
