"""Error taxonomy for the secure-storage subsystem.

Wrong passphrase and tampered ciphertext both surface as AuthenticationError;
the cipher layer cannot tell them apart and does not try to.
"""

from __future__ import annotations


class SecureStorageError(Exception):
    """Base class for every error raised by kbvault services."""


class KeyDerivationError(SecureStorageError):
    """Raised when key derivation is misconfigured. Never raised for user input."""


class AuthenticationError(SecureStorageError):
    """Raised when AES-GCM authentication fails (wrong key or tampered data)."""


class NotEnabledError(SecureStorageError):
    """Raised when an operation needs a session key but none is loaded."""

    def __init__(self, message: str = "Encryption not enabled - no passphrase set") -> None:
        super().__init__(message)


class CodecError(SecureStorageError):
    """Raised on malformed base64, framing, or UTF-8 on decode paths."""


class StoreError(SecureStorageError):
    """Raised when the underlying database or filesystem operation fails."""


class NoteNotFoundError(StoreError):
    def __init__(self, note_id: str) -> None:
        super().__init__(f"Note not found: {note_id}")
        self.note_id = note_id
