"""Tests for services/notes.py: dual-mode note storage and soft-fail reads."""

from __future__ import annotations

import pytest
from sqlmodel import Session

from kbvault.errors import NoteNotFoundError, NotEnabledError
from kbvault.models.note import ENCRYPTED_PLACEHOLDER, Note
from kbvault.passphrase_state import PassphraseSession
from kbvault.services.notes import SecureNoteStore
from kbvault.utils.crypto import b64encode


def _row(session: Session, note_id: str) -> Note:
    session.expire_all()
    note = session.get(Note, note_id)
    assert note is not None
    return note


class TestPlaintextMode:
    def test_create_stores_plaintext(self, note_store: SecureNoteStore, session: Session) -> None:
        note_id = note_store.create(session, "Title", "plain body")
        row = _row(session, note_id)
        assert row.content == "plain body"
        assert row.content_encrypted is None
        assert row.nonce is None
        assert row.content_plaintext == "plain body"

    def test_get_returns_content(self, note_store: SecureNoteStore, session: Session) -> None:
        note_id = note_store.create(session, "Title", "plain body")
        note = note_store.get(session, note_id)
        assert note is not None
        assert note.content == "plain body"
        assert note.is_encrypted is False

    def test_get_missing_returns_none(self, note_store: SecureNoteStore, session: Session) -> None:
        assert note_store.get(session, "no-such-id") is None


class TestEncryptedMode:
    def test_scenario_alpha_hello_world(
        self,
        note_store: SecureNoteStore,
        passphrase_session: PassphraseSession,
        session: Session,
    ) -> None:
        """Passphrase "alpha": encrypted row, readable while set, placeholder once cleared."""
        passphrase_session.set_passphrase("alpha")
        note_id = note_store.create(session, "Greeting", "hello world")

        row = _row(session, note_id)
        assert row.content == ""
        assert row.content_encrypted
        assert row.nonce
        assert row.content_plaintext == "hello world"
        assert "hello world" not in row.content_encrypted

        assert note_store.get(session, note_id).content == "hello world"

        passphrase_session.clear_passphrase()
        note = note_store.get(session, note_id)
        assert note.content == ENCRYPTED_PLACEHOLDER
        assert note.is_encrypted is True
        assert note.title == "Greeting"

    def test_wrong_passphrase_reads_placeholder(
        self,
        note_store: SecureNoteStore,
        passphrase_session: PassphraseSession,
        session: Session,
    ) -> None:
        passphrase_session.set_passphrase("alpha")
        note_id = note_store.create(session, "T", "secret")
        passphrase_session.set_passphrase("beta")
        assert note_store.get(session, note_id).content == ENCRYPTED_PLACEHOLDER
        assert _row(session, note_id).content_plaintext == "secret"

    def test_same_passphrase_after_restart_reads(
        self, note_store: SecureNoteStore, passphrase_session: PassphraseSession, session: Session
    ) -> None:
        passphrase_session.set_passphrase("alpha")
        note_id = note_store.create(session, "T", "durable")
        passphrase_session.clear_passphrase()
        passphrase_session.set_passphrase("alpha")
        assert note_store.get(session, note_id).content == "durable"

    def test_set_passphrase_does_not_touch_existing_notes(
        self, note_store: SecureNoteStore, passphrase_session: PassphraseSession, session: Session
    ) -> None:
        note_id = note_store.create(session, "Old", "written before encryption")
        passphrase_session.set_passphrase("alpha")
        row = _row(session, note_id)
        assert row.content_encrypted is None
        assert note_store.get(session, note_id).content == "written before encryption"


class TestBulkRead:
    def test_get_all_mixed_modes(
        self, note_store: SecureNoteStore, passphrase_session: PassphraseSession, session: Session
    ) -> None:
        plain_id = note_store.create(session, "Plain", "p")
        passphrase_session.set_passphrase("alpha")
        enc_id = note_store.create(session, "Enc", "e")

        by_id = {n.id: n for n in note_store.get_all(session)}
        assert by_id[plain_id].content == "p"
        assert by_id[enc_id].content == "e"

        passphrase_session.clear_passphrase()
        by_id = {n.id: n for n in note_store.get_all(session)}
        assert by_id[plain_id].content == "p"
        assert by_id[enc_id].content == ENCRYPTED_PLACEHOLDER

    def test_corrupted_row_does_not_break_listing(
        self, note_store: SecureNoteStore, passphrase_session: PassphraseSession, session: Session
    ) -> None:
        """A tampered row degrades to the placeholder; the rest still decrypt."""
        passphrase_session.set_passphrase("alpha")
        good_id = note_store.create(session, "Good", "fine")
        bad_id = note_store.create(session, "Bad", "will be tampered")

        row = _row(session, bad_id)
        row.content_encrypted = b64encode(b"\x00" * 32)
        session.add(row)
        session.commit()

        by_id = {n.id: n for n in note_store.get_all(session)}
        assert by_id[good_id].content == "fine"
        assert by_id[bad_id].content == ENCRYPTED_PLACEHOLDER

    def test_invalid_base64_row_reads_placeholder(
        self, note_store: SecureNoteStore, passphrase_session: PassphraseSession, session: Session
    ) -> None:
        passphrase_session.set_passphrase("alpha")
        note_id = note_store.create(session, "T", "body")
        row = _row(session, note_id)
        row.nonce = "%%% not base64 %%%"
        session.add(row)
        session.commit()
        assert note_store.get(session, note_id).content == ENCRYPTED_PLACEHOLDER

    def test_ordered_by_updated_at_desc(self, note_store: SecureNoteStore, session: Session) -> None:
        first = note_store.create(session, "First", "1")
        second = note_store.create(session, "Second", "2")
        note_store.update(session, first, "First", "1 edited")
        ids = [n.id for n in note_store.get_all(session)]
        assert ids.index(first) < ids.index(second)


class TestUpdate:
    def test_update_plaintext_note(self, note_store: SecureNoteStore, session: Session) -> None:
        note_id = note_store.create(session, "T", "v1")
        note_store.update(session, note_id, "T2", "v2")
        row = _row(session, note_id)
        assert row.title == "T2"
        assert row.content == "v2"
        assert row.content_plaintext == "v2"

    def test_plaintext_note_stays_plaintext_when_enabled(
        self, note_store: SecureNoteStore, passphrase_session: PassphraseSession, session: Session
    ) -> None:
        """Updating does not change a note's storage mode."""
        note_id = note_store.create(session, "T", "v1")
        passphrase_session.set_passphrase("alpha")
        note_store.update(session, note_id, "T", "v2")
        row = _row(session, note_id)
        assert row.content_encrypted is None
        assert row.content == "v2"
        assert row.content_plaintext == "v2"

    def test_update_encrypted_note_reencrypts(
        self, note_store: SecureNoteStore, passphrase_session: PassphraseSession, session: Session
    ) -> None:
        passphrase_session.set_passphrase("alpha")
        note_id = note_store.create(session, "T", "v1")
        old_nonce = _row(session, note_id).nonce

        note_store.update(session, note_id, "T", "v2")
        row = _row(session, note_id)
        assert row.content == ""
        assert row.nonce != old_nonce
        assert row.content_plaintext == "v2"
        assert note_store.get(session, note_id).content == "v2"

    def test_update_encrypted_note_while_disabled(
        self, note_store: SecureNoteStore, passphrase_session: PassphraseSession, session: Session
    ) -> None:
        """Without a key, an encrypted note is left untouched."""
        passphrase_session.set_passphrase("alpha")
        note_id = note_store.create(session, "T", "v1")
        before = _row(session, note_id).content_encrypted
        passphrase_session.clear_passphrase()

        with pytest.raises(NotEnabledError):
            note_store.update(session, note_id, "T-new", "v2")

        row = _row(session, note_id)
        assert row.title == "T"
        assert row.content_encrypted == before
        assert row.content_plaintext == "v1"

    def test_update_missing_note(self, note_store: SecureNoteStore, session: Session) -> None:
        with pytest.raises(NoteNotFoundError):
            note_store.update(session, "missing", "T", "c")


class TestDelete:
    def test_delete_plaintext(self, note_store: SecureNoteStore, session: Session) -> None:
        note_id = note_store.create(session, "T", "c")
        assert note_store.delete(session, note_id) is True
        assert note_store.get(session, note_id) is None

    def test_delete_encrypted_while_locked(
        self, note_store: SecureNoteStore, passphrase_session: PassphraseSession, session: Session
    ) -> None:
        passphrase_session.set_passphrase("alpha")
        note_id = note_store.create(session, "T", "c")
        passphrase_session.clear_passphrase()
        assert note_store.delete(session, note_id) is True
        assert note_store.get(session, note_id) is None

    def test_delete_missing(self, note_store: SecureNoteStore, session: Session) -> None:
        assert note_store.delete(session, "missing") is False
