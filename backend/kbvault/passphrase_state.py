"""In-memory passphrase session holding the active note-encryption key.

The key is held in process memory only while encryption is enabled. It is
never written to disk; on clear, replacement, or shutdown it is wiped with
secure_zero(). One PassphraseSession is created at startup and handed to
every service that needs it.
"""

from __future__ import annotations

import logging
import threading
import time

from kbvault.errors import NotEnabledError
from kbvault.utils.crypto import (
    VerificationFixture,
    aes_gcm_decrypt,
    aes_gcm_encrypt,
    build_verification_fixture,
    decode_sealed,
    decode_utf8,
    derive_key,
    encode_sealed,
    secure_zero,
)
from kbvault.utils import crypto

logger = logging.getLogger(__name__)


class PassphraseSession:
    """Two-state holder (Disabled / Enabled) for the derived note key.

    Every read and transition happens under one lock. The raw key never
    leaves the lock scope: callers get ciphertext or plaintext, not the key.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._key: bytearray | None = None
        self._fixture: VerificationFixture | None = None

    def __del__(self) -> None:
        # Best effort on interpreter teardown; lifespan shutdown calls clear().
        key = getattr(self, "_key", None)
        if key is not None:
            secure_zero(key)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def set_passphrase(self, passphrase: str) -> None:
        """Derive a key from ``passphrase`` and enable encryption.

        An empty passphrase clears the session instead. Existing notes are
        not touched; migration is a separate operation.
        """
        if not passphrase:
            self.clear_passphrase()
            return

        start = time.perf_counter()
        # Derivation is slow; do it outside the lock.
        new_key = derive_key(passphrase)
        fixture = build_verification_fixture(new_key)

        with self._lock:
            if self._key is not None:
                secure_zero(self._key)
            self._key = new_key
            self._fixture = fixture

        logger.info(
            "Passphrase set in %.1fms", (time.perf_counter() - start) * 1000
        )

    def clear_passphrase(self) -> None:
        """Wipe the key and drop the fixture. Idempotent."""
        with self._lock:
            was_enabled = self._key is not None
            if self._key is not None:
                secure_zero(self._key)
            self._key = None
            self._fixture = None
        if was_enabled:
            logger.info("Passphrase cleared from memory")

    def verify_passphrase(self, passphrase: str) -> bool:
        """Check ``passphrase`` against the stored fixture.

        Returns False when no passphrase has been set.
        """
        with self._lock:
            fixture = self._fixture
        if fixture is None:
            return False
        return crypto.verify_passphrase(passphrase, fixture)

    @property
    def is_enabled(self) -> bool:
        with self._lock:
            return self._key is not None

    # ------------------------------------------------------------------
    # Crypto wrappers
    # ------------------------------------------------------------------

    def encrypt(self, data: bytes) -> tuple[bytes, bytes]:
        """Encrypt under the session key. Returns (nonce, ciphertext)."""
        with self._lock:
            if self._key is None:
                raise NotEnabledError()
            return aes_gcm_encrypt(self._key, data)

    def decrypt(self, ciphertext: bytes, nonce: bytes) -> bytes:
        """Decrypt under the session key.

        Raises NotEnabledError when disabled and AuthenticationError when the
        key does not match or the data was altered.
        """
        with self._lock:
            if self._key is None:
                raise NotEnabledError()
            return aes_gcm_decrypt(self._key, ciphertext, nonce)

    def encrypt_string(self, data: str) -> str:
        """Encrypt text and render it as ``base64(nonce):base64(ciphertext)``."""
        nonce, ciphertext = self.encrypt(data.encode("utf-8"))
        return encode_sealed(nonce, ciphertext)

    def decrypt_string(self, encoded: str) -> str:
        """Reverse of encrypt_string. Raises CodecError on malformed input."""
        nonce, ciphertext = decode_sealed(encoded)
        return decode_utf8(self.decrypt(ciphertext, nonce))
