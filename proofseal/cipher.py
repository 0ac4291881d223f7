"""
ProofSeal Cipher Engine

Symmetric authenticated encryption over opaque byte buffers.

Uses XChaCha20-Poly1305 (IETF construction, libsodium via PyNaCl):
- 256-bit key
- 192-bit random nonce, fresh per call
- 128-bit Poly1305 tag

Sealed buffer layout (fixed offsets):

    nonce (24 bytes) || encrypted body || tag (16 bytes)
"""

import logging

import nacl.bindings
import nacl.utils
from nacl.exceptions import CryptoError

from .errors import IntegrityError, ValidationError

logger = logging.getLogger(__name__)

KEY_SIZE = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_KEYBYTES
NONCE_SIZE = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_NPUBBYTES
TAG_SIZE = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_ABYTES
OVERHEAD = NONCE_SIZE + TAG_SIZE

AUTH_TAG = "auth_tag"


def generate_key() -> bytes:
    """Generate a fresh random key from the libsodium CSPRNG."""
    return nacl.utils.random(KEY_SIZE)


def _check_key(key: bytes) -> bytes:
    if not isinstance(key, (bytes, bytearray)):
        raise ValidationError("key", "must be bytes")
    if len(key) != KEY_SIZE:
        raise ValidationError("key", f"must be {KEY_SIZE} bytes")
    return bytes(key)


def encrypt(plaintext: bytes, key: bytes) -> bytes:
    """
    Encrypt ``plaintext`` under ``key``.

    Returns:
        ``nonce || body || tag`` as one buffer
    """
    if not isinstance(plaintext, (bytes, bytearray)):
        raise ValidationError("plaintext", "must be bytes")
    key = _check_key(key)

    nonce = nacl.utils.random(NONCE_SIZE)
    # libsodium appends the tag to the encrypted body
    sealed = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_encrypt(
        bytes(plaintext), None, nonce, key
    )
    logger.debug("Encrypted %d bytes -> %d bytes", len(plaintext), len(sealed) + NONCE_SIZE)
    return nonce + sealed


def decrypt(ciphertext: bytes, key: bytes) -> bytes:
    """
    Decrypt a buffer produced by ``encrypt``.

    Raises:
        IntegrityError: If the buffer is truncated or the tag does not
            verify (tampered bytes or wrong key)
        ValidationError: If the key is malformed
    """
    key = _check_key(key)
    if not isinstance(ciphertext, (bytes, bytearray)):
        raise ValidationError("ciphertext", "must be bytes")
    if len(ciphertext) < OVERHEAD:
        raise IntegrityError(AUTH_TAG, "Content failed tamper check (truncated ciphertext)")

    ciphertext = bytes(ciphertext)
    nonce = ciphertext[:NONCE_SIZE]
    body_and_tag = ciphertext[NONCE_SIZE:]

    try:
        plaintext = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_decrypt(
            body_and_tag, None, nonce, key
        )
    except CryptoError as e:
        raise IntegrityError(AUTH_TAG) from e

    logger.debug("Decrypted %d bytes -> %d bytes", len(ciphertext), len(plaintext))
    return plaintext


class CipherEngine:
    """
    Injectable wrapper around the module-level primitives.

    The lifecycle depends on this class so tests can observe or replace
    the decrypt step.
    """

    key_size = KEY_SIZE

    def generate_key(self) -> bytes:
        return generate_key()

    def encrypt(self, plaintext: bytes, key: bytes) -> bytes:
        return encrypt(plaintext, key)

    def decrypt(self, ciphertext: bytes, key: bytes) -> bytes:
        return decrypt(ciphertext, key)
