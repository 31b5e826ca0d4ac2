"""Low-level cryptographic primitives for kbvault.

Pure functions with no domain knowledge: PBKDF2 key derivation, AES-256-GCM
sealing, passphrase verification fixtures and the ``nonce:ciphertext`` wire
format. No state is kept here; the active key lives in PassphraseSession.
"""

from __future__ import annotations

import base64
import binascii
import ctypes
import hmac
import logging
import os
import time
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from kbvault.errors import AuthenticationError, CodecError, KeyDerivationError

logger = logging.getLogger(__name__)

# Fixed so that the same passphrase always yields the same key across restarts.
KDF_SALT = b"kb-pro-v1-salt-2026"
KDF_ITERATIONS = 100_000
KEY_LENGTH = 32
NONCE_LENGTH = 12

FIXTURE_MARKER = b"passphrase-verification-test-2026"

SEALED_SEPARATOR = ":"


@dataclass(frozen=True, slots=True)
class VerificationFixture:
    """Ciphertext of a known marker, used to test a candidate passphrase."""

    ciphertext: bytes
    nonce: bytes
    expected_plaintext: bytes


def secure_zero(buf: bytearray) -> None:
    """Overwrite a bytearray with zeros to remove key material from memory.

    Uses ctypes.memset for a C-level overwrite that the interpreter
    cannot optimize away.
    """
    n = len(buf)
    if n == 0:
        return
    ctypes.memset((ctypes.c_char * n).from_buffer(buf), 0, n)


def derive_key(passphrase: str) -> bytearray:
    """Derive a 256-bit key from a passphrase with PBKDF2-HMAC-SHA256.

    Deterministic: fixed salt and iteration count, so notes encrypted in an
    earlier process remain decryptable with the same passphrase. Returns a
    bytearray so the caller can wipe it with secure_zero().
    """
    start = time.perf_counter()
    kdf = PBKDF2HMAC(
        algorithm=SHA256(),
        length=KEY_LENGTH,
        salt=KDF_SALT,
        iterations=KDF_ITERATIONS,
    )
    try:
        key = bytearray(kdf.derive(passphrase.encode("utf-8")))
    except (TypeError, ValueError) as exc:
        raise KeyDerivationError(f"Key derivation failed: {exc}") from exc
    if len(key) != KEY_LENGTH:
        raise KeyDerivationError(f"Derived key has length {len(key)}, expected {KEY_LENGTH}")
    logger.info("Key derivation completed in %.1fms", (time.perf_counter() - start) * 1000)
    return key


def aes_gcm_encrypt(key: bytes | bytearray, plaintext: bytes) -> tuple[bytes, bytes]:
    """Encrypt plaintext with AES-256-GCM under a fresh random 96-bit nonce.

    Returns (nonce, ciphertext+tag). The caller persists both.
    """
    start = time.perf_counter()
    nonce = os.urandom(NONCE_LENGTH)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
    logger.debug("Encryption completed in %.2fms", (time.perf_counter() - start) * 1000)
    return nonce, ciphertext


def aes_gcm_decrypt(key: bytes | bytearray, ciphertext: bytes, nonce: bytes) -> bytes:
    """Decrypt data produced by aes_gcm_encrypt.

    Raises AuthenticationError if the ciphertext or nonce was altered, or if
    the key is wrong. The two cases are indistinguishable.
    """
    start = time.perf_counter()
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
    except (InvalidTag, ValueError) as exc:
        raise AuthenticationError(
            "Decryption failed (wrong passphrase or corrupted data)"
        ) from exc
    logger.debug("Decryption completed in %.2fms", (time.perf_counter() - start) * 1000)
    return plaintext


def build_verification_fixture(key: bytes | bytearray) -> VerificationFixture:
    """Encrypt the fixed marker under ``key`` for later passphrase checks."""
    nonce, ciphertext = aes_gcm_encrypt(key, FIXTURE_MARKER)
    return VerificationFixture(
        ciphertext=ciphertext,
        nonce=nonce,
        expected_plaintext=FIXTURE_MARKER,
    )


def verify_passphrase(candidate: str, fixture: VerificationFixture) -> bool:
    """Return True iff ``candidate`` derives the key that sealed ``fixture``.

    Any decryption failure or mismatch yields False, never an error.
    """
    key = derive_key(candidate)
    try:
        decrypted = aes_gcm_decrypt(key, fixture.ciphertext, fixture.nonce)
    except AuthenticationError:
        return False
    finally:
        secure_zero(key)
    return hmac.compare_digest(decrypted, fixture.expected_plaintext)


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(text: str | bytes) -> bytes:
    """Strict base64 decode. Raises CodecError on any non-alphabet input."""
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CodecError(f"Invalid base64: {exc}") from exc


def encode_sealed(nonce: bytes, ciphertext: bytes) -> str:
    """Render (nonce, ciphertext) as ``base64(nonce):base64(ciphertext)``."""
    return f"{b64encode(nonce)}{SEALED_SEPARATOR}{b64encode(ciphertext)}"


def decode_sealed(encoded: str) -> tuple[bytes, bytes]:
    """Parse the ``nonce:ciphertext`` wire format back into raw bytes.

    Raises CodecError if there is not exactly one separator, if either half
    is not valid base64, or if the nonce has the wrong length.
    """
    parts = encoded.strip().split(SEALED_SEPARATOR)
    if len(parts) != 2:
        raise CodecError("Invalid encrypted data format")
    nonce = b64decode(parts[0])
    ciphertext = b64decode(parts[1])
    if len(nonce) != NONCE_LENGTH:
        raise CodecError(f"Invalid nonce length: {len(nonce)}")
    return nonce, ciphertext


def decode_utf8(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise CodecError(f"Invalid UTF-8: {exc}") from exc
