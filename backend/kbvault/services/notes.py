"""Secure note store: transparent plaintext/encrypted note persistence.

Rows written while the passphrase session is enabled hold base64
(ciphertext, nonce) and an empty ``content``; rows written while disabled
hold plaintext ``content``. Both kinds keep ``content_plaintext`` equal to
the true body so the FTS index stays searchable.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlmodel import Session, col, select

from kbvault.db import StoreLock, store_errors
from kbvault.errors import AuthenticationError, CodecError, NotEnabledError, NoteNotFoundError
from kbvault.models.note import ENCRYPTED_PLACEHOLDER, Note, NoteRead
from kbvault.passphrase_state import PassphraseSession
from kbvault.utils.crypto import b64decode, b64encode, decode_utf8

logger = logging.getLogger(__name__)


class SecureNoteStore:
    """Note CRUD that encrypts or not depending on the passphrase session."""

    __slots__ = ("passphrase", "store_lock")

    def __init__(self, passphrase: PassphraseSession, store_lock: StoreLock) -> None:
        self.passphrase = passphrase
        self.store_lock = store_lock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, db: Session, title: str, content: str) -> str:
        """Insert a note and return its id.

        Encrypted when the session is enabled, plaintext otherwise.
        """
        with self.store_lock:
            note = Note(title=title, content=content, content_plaintext=content)
            if self.passphrase.is_enabled:
                # NotEnabledError here means the session was cleared mid-call
                self._seal(note, content)
            with store_errors(db):
                db.add(note)
                db.commit()
            logger.debug("Created note %s (encrypted=%s)", note.id, note.is_encrypted)
            return note.id

    def update(self, db: Session, note_id: str, title: str, content: str) -> None:
        """Overwrite title and body, keeping the note's current storage mode.

        A plaintext note stays plaintext; switching modes is what migration
        is for. An encrypted note can only be rewritten while the session is
        enabled, otherwise NotEnabledError is raised and nothing changes.
        """
        with self.store_lock:
            with store_errors(db):
                note = db.get(Note, note_id)
            if note is None:
                raise NoteNotFoundError(note_id)
            if note.is_encrypted and not self.passphrase.is_enabled:
                raise NotEnabledError(
                    f"Note {note_id} is encrypted; set the passphrase before editing"
                )

            try:
                if note.is_encrypted:
                    self._seal(note, content)
                else:
                    note.content = content
            except NotEnabledError:
                # Session was cleared between the check and the seal
                db.rollback()
                raise
            note.title = title
            note.content_plaintext = content
            note.updated_at = datetime.now(timezone.utc)

            with store_errors(db):
                db.add(note)
                db.commit()

    def delete(self, db: Session, note_id: str) -> bool:
        """Delete a note regardless of mode. Returns False if it did not exist."""
        with self.store_lock:
            with store_errors(db):
                note = db.get(Note, note_id)
                if note is None:
                    return False
                db.delete(note)
                db.commit()
            return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, db: Session, note_id: str) -> NoteRead | None:
        with self.store_lock:
            with store_errors(db):
                note = db.get(Note, note_id)
            if note is None:
                return None
            return self._to_read(note)

    def get_all(self, db: Session) -> list[NoteRead]:
        """All notes, most recently updated first.

        A note that cannot be decrypted is returned with the placeholder
        body; one bad row never fails the listing.
        """
        with self.store_lock:
            with store_errors(db):
                notes = db.exec(
                    select(Note).order_by(col(Note.updated_at).desc())
                ).all()
            return [self._to_read(n) for n in notes]

    def read_content(self, note: Note) -> str:
        """Return the note body, or ENCRYPTED_PLACEHOLDER if it cannot be read."""
        if not note.is_encrypted:
            return note.content
        if not self.passphrase.is_enabled:
            return ENCRYPTED_PLACEHOLDER
        try:
            plaintext = self.passphrase.decrypt(
                b64decode(note.content_encrypted or ""),
                b64decode(note.nonce or ""),
            )
            return decode_utf8(plaintext)
        except (AuthenticationError, CodecError, NotEnabledError) as exc:
            logger.warning("Note %s could not be decrypted: %s", note.id, exc)
            return ENCRYPTED_PLACEHOLDER

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _seal(self, note: Note, content: str) -> None:
        nonce, ciphertext = self.passphrase.encrypt(content.encode("utf-8"))
        note.content = ""
        note.content_encrypted = b64encode(ciphertext)
        note.nonce = b64encode(nonce)

    def _to_read(self, note: Note) -> NoteRead:
        return NoteRead(
            id=note.id,
            title=note.title,
            content=self.read_content(note),
            is_encrypted=note.is_encrypted,
            created_at=note.created_at,
            updated_at=note.updated_at,
        )
