"""Bulk conversion of every note between plaintext and encrypted storage.

Each row is committed on its own. If a row fails, the run stops and the
error propagates; rows converted before it stay converted.
"""

from __future__ import annotations

import logging
import time

from sqlmodel import Session, col, select

from kbvault.db import StoreLock, store_errors
from kbvault.errors import SecureStorageError, NotEnabledError
from kbvault.models.note import Note
from kbvault.passphrase_state import PassphraseSession
from kbvault.utils.crypto import b64decode, b64encode, decode_utf8

logger = logging.getLogger(__name__)


class MigrationService:
    def __init__(self, passphrase: PassphraseSession, store_lock: StoreLock) -> None:
        self._passphrase = passphrase
        self._store_lock = store_lock

    def can_migrate(self) -> bool:
        """Migration in either direction needs an active session key."""
        return self._passphrase.is_enabled

    def migrate_to_encrypted(self, db: Session) -> int:
        """Encrypt every plaintext note under the session key.

        The plaintext body is cleared; the shadow field keeps the body for
        search. Returns the number of notes converted.
        """
        self._require_enabled()
        start = time.perf_counter()
        migrated = 0

        with self._store_lock:
            with store_errors(db):
                notes = db.exec(
                    select(Note).where(col(Note.content_encrypted).is_(None))
                ).all()
            logger.info("Encrypting %d plaintext note(s)", len(notes))

            for note in notes:
                try:
                    nonce, ciphertext = self._passphrase.encrypt(note.content.encode("utf-8"))
                except SecureStorageError as exc:
                    logger.error("Encryption failed for note %s: %s", note.id, exc)
                    db.rollback()
                    raise
                if note.content_plaintext is None:
                    note.content_plaintext = note.content
                note.content = ""
                note.content_encrypted = b64encode(ciphertext)
                note.nonce = b64encode(nonce)
                with store_errors(db):
                    db.add(note)
                    db.commit()
                migrated += 1

        logger.info(
            "Encrypted %d note(s) in %.1fms", migrated, (time.perf_counter() - start) * 1000
        )
        return migrated

    def migrate_to_plaintext(self, db: Session) -> int:
        """Decrypt every encrypted note back into its plaintext body.

        A wrong session key fails on the first row with AuthenticationError,
        before anything is written. Returns the number of notes converted.
        """
        self._require_enabled()
        start = time.perf_counter()
        migrated = 0

        with self._store_lock:
            with store_errors(db):
                notes = db.exec(
                    select(Note).where(col(Note.content_encrypted).is_not(None))
                ).all()
            logger.info("Decrypting %d encrypted note(s)", len(notes))

            for note in notes:
                try:
                    plaintext = self._passphrase.decrypt(
                        b64decode(note.content_encrypted or ""),
                        b64decode(note.nonce or ""),
                    )
                    content = decode_utf8(plaintext)
                except SecureStorageError as exc:
                    logger.error("Decryption failed for note %s: %s", note.id, exc)
                    db.rollback()
                    raise
                note.content = content
                note.content_encrypted = None
                note.nonce = None
                if note.content_plaintext is None:
                    note.content_plaintext = content
                with store_errors(db):
                    db.add(note)
                    db.commit()
                migrated += 1

        logger.info(
            "Decrypted %d note(s) in %.1fms", migrated, (time.perf_counter() - start) * 1000
        )
        return migrated

    def _require_enabled(self) -> None:
        if not self._passphrase.is_enabled:
            raise NotEnabledError("Encryption not enabled")
