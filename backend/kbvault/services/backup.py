from __future__ import annotations

import logging
import os
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from kbvault.config import Settings
from kbvault.db import StoreLock, snapshot_to, store_errors
from kbvault.errors import CodecError, NotEnabledError, StoreError
from kbvault.models.backup import BackupRecord, BackupRecordRead, BackupResponse
from kbvault.passphrase_state import PassphraseSession
from kbvault.utils.crypto import decode_sealed, encode_sealed

# Encrypted backups: MAGIC + base64(nonce) ":" base64(ciphertext)
BACKUP_MAGIC = b"KBVAULT-ENC1\n"
SQLITE_HEADER = b"SQLite format 3\x00"

FORMAT_SEALED = "sealed"
FORMAT_LEGACY_SEALED = "legacy-sealed"
FORMAT_RAW = "raw"


def classify_backup(data: bytes) -> tuple[str, bytes]:
    """Work out whether ``data`` is a sealed or raw backup.

    Returns (format, payload) where payload is the part to decode. Untagged
    ``b64:b64`` files from older versions are recognised only when both
    halves are strict base64 and the nonce has the right length.
    """
    if data.startswith(BACKUP_MAGIC):
        return FORMAT_SEALED, data[len(BACKUP_MAGIC):]
    if data.startswith(SQLITE_HEADER):
        return FORMAT_RAW, data
    try:
        decode_sealed(data.decode("ascii"))
    except (UnicodeDecodeError, CodecError):
        return FORMAT_RAW, data
    return FORMAT_LEGACY_SEALED, data


class BackupService:
    def __init__(
        self,
        settings: Settings,
        passphrase: PassphraseSession,
        store_lock: StoreLock,
        engine: Engine | None = None,
    ) -> None:
        self._settings = settings
        self._passphrase = passphrase
        self._store_lock = store_lock
        self._engine = engine
        self._log = logging.getLogger(__name__)
        self._log.info("BackupService initialized")

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_history(self, db: Session, limit: int | None = None) -> list[BackupRecordRead]:
        """Return recent backup records ordered by started_at desc."""
        if limit is None:
            limit = self._settings.backup_history_limit
        with store_errors(db):
            records = db.exec(
                select(BackupRecord)
                .order_by(col(BackupRecord.started_at).desc())
                .limit(limit)
            ).all()
        return [BackupRecordRead.model_validate(r) for r in records]

    # ------------------------------------------------------------------
    # Backup / restore
    # ------------------------------------------------------------------

    def create_backup(self, db: Session, path: str | Path) -> BackupResponse:
        """Write a point-in-time copy of the whole store to ``path``.

        Sealed under the session key when encryption is enabled, otherwise
        the raw SQLite snapshot. Nothing is left at ``path`` on failure.
        """
        dest = self.resolve_path(path)
        record = BackupRecord(path=str(dest))
        start = time.monotonic()

        with self._store_lock:
            try:
                encrypted, size = self._write_backup(dest)
            except Exception as exc:
                self._log.exception("Backup to %s failed", dest)
                record.status = "failed"
                record.error_message = str(exc)[:500]
                try:
                    self._finish_record(db, record, start)
                except StoreError as record_exc:
                    self._log.warning("Could not record failed backup: %s", record_exc)
                if isinstance(exc, OSError):
                    raise StoreError(f"Backup failed: {exc}") from exc
                raise

            record.status = "succeeded"
            record.encrypted = encrypted
            record.size_bytes = size
            self._finish_record(db, record, start)

        self._log.info(
            "Backup to %s succeeded: encrypted=%s, size=%d, duration=%.1fs",
            dest, encrypted, size, record.duration_seconds or 0.0,
        )
        return BackupResponse(path=str(dest), encrypted=encrypted, size_bytes=size)

    def restore_backup(self, path: str | Path, target: str | Path) -> BackupResponse:
        """Recover the raw snapshot from ``path`` and write it to ``target``.

        Both paths resolve like create_backup's: bare file names live in the
        backup directory.
        """
        source = self.resolve_path(path)
        dest = self.resolve_path(target)

        with self._store_lock:
            try:
                data = source.read_bytes()
            except OSError as exc:
                raise StoreError(f"Cannot read backup {source}: {exc}") from exc

            fmt, payload = classify_backup(data)
            if fmt == FORMAT_SEALED and not self._passphrase.is_enabled:
                raise NotEnabledError(
                    "Backup is encrypted; set the passphrase before restoring"
                )
            # Untagged files fall back to raw when no key is loaded
            encrypted = fmt == FORMAT_SEALED or (
                fmt == FORMAT_LEGACY_SEALED and self._passphrase.is_enabled
            )
            snapshot = self._unseal(payload) if encrypted else data

            try:
                self._atomic_write(dest, snapshot)
            except OSError as exc:
                self._log.exception("Restore to %s failed", dest)
                raise StoreError(f"Restore failed: {exc}") from exc

        self._log.info(
            "Restored %s backup %s to %s (%d bytes)",
            "encrypted" if encrypted else "raw", source, dest, len(snapshot),
        )
        return BackupResponse(path=str(dest), encrypted=encrypted, size_bytes=len(snapshot))

    def resolve_path(self, path: str | Path) -> Path:
        """Bare file names go to the configured backup directory."""
        p = Path(path)
        if not p.is_absolute() and p.parent == Path("."):
            return self._settings.backup_dir / p
        return p

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _write_backup(self, dest: Path) -> tuple[bool, int]:
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=".kbvault-snapshot-", suffix=".db", dir=dest.parent
        )
        os.close(fd)
        snapshot_path = Path(tmp_name)
        sealed_path = snapshot_path.with_suffix(".sealed")

        try:
            self._log.info("Starting SQLite snapshot")
            snapshot_to(snapshot_path, self._engine)

            if not self._passphrase.is_enabled:
                size = snapshot_path.stat().st_size
                os.replace(snapshot_path, dest)
                return False, size

            nonce, ciphertext = self._passphrase.encrypt(snapshot_path.read_bytes())
            sealed = BACKUP_MAGIC + encode_sealed(nonce, ciphertext).encode("ascii")
            sealed_path.write_bytes(sealed)
            os.replace(sealed_path, dest)
            return True, len(sealed)
        finally:
            for leftover in (snapshot_path, sealed_path):
                try:
                    leftover.unlink(missing_ok=True)
                except OSError:
                    self._log.warning("Failed to clean up temporary file: %s", leftover)

    def _unseal(self, payload: bytes) -> bytes:
        try:
            text = payload.decode("ascii")
        except UnicodeDecodeError as exc:
            raise CodecError(f"Encrypted backup is not ASCII: {exc}") from exc
        nonce, ciphertext = decode_sealed(text)
        return self._passphrase.decrypt(ciphertext, nonce)

    def _atomic_write(self, dest: Path, data: bytes) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".kbvault-restore-", dir=dest.parent)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_path, dest)
        finally:
            tmp_path.unlink(missing_ok=True)

    def _finish_record(self, db: Session, record: BackupRecord, start: float) -> None:
        record.completed_at = datetime.now(timezone.utc)
        record.duration_seconds = round(time.monotonic() - start, 2)
        with store_errors(db):
            db.add(record)
            db.commit()
            db.refresh(record)
