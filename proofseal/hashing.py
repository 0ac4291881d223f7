"""
ProofSeal integrity verification.

All content digests are SHA-256 with lowercase hexadecimal output. The
same function hashes the plaintext at registration and the ciphertext
as stored; ``verify_digest`` is the tamper check run on every retrieval.
"""

import re

from .errors import IntegrityError, ValidationError
from .util import constant_time_compare, sha256_hex

PLAINTEXT_HASH = "plaintext_hash"
CIPHERTEXT_HASH = "ciphertext_hash"

DIGEST_PATTERN = re.compile(r'^[a-f0-9]{64}$')


def hash_of(data: bytes) -> str:
    """Compute the SHA-256 content digest of ``data``."""
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise ValidationError("data", "must be bytes")
    return sha256_hex(bytes(data))


def normalize_digest(digest: str) -> str:
    """
    Normalize a declared digest to bare lowercase hex.

    Accepts the ``sha256:`` prefixed form as well.
    """
    if not isinstance(digest, str) or not digest:
        raise ValidationError("digest", "must be a non-empty string")
    digest = digest.strip().lower()
    if digest.startswith("sha256:"):
        digest = digest[len("sha256:"):]
    if not DIGEST_PATTERN.match(digest):
        raise ValidationError("digest", "must be 64 hexadecimal characters")
    return digest


def digest_matches(expected_digest: str, data: bytes) -> bool:
    """Recompute the digest of ``data`` and compare against the declared one."""
    return constant_time_compare(normalize_digest(expected_digest), hash_of(data))


def verify_digest(expected_digest: str, data: bytes, stage: str = CIPHERTEXT_HASH) -> None:
    """
    Verify that ``data`` matches ``expected_digest``.

    Raises:
        IntegrityError: If the recomputed digest differs. The message
            does not include either digest.
    """
    if not digest_matches(expected_digest, data):
        raise IntegrityError(stage)
