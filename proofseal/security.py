"""
Security module for ProofSeal.

Provides input validation and sanitization for identities, secret
access codes, anchor identifiers, and uploaded documents.
"""

import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import ValidationError

# ============================================================
# Input Validation
# ============================================================

IDENTITY_MAX_LENGTH = 128
SECRET_CODE_MAX_LENGTH = 256
ANCHOR_TX_ID_MAX_LENGTH = 256

WHITESPACE_PATTERN = re.compile(r'\s')
PROOF_CODE_PATTERN = re.compile(r'^[A-Za-z0-9_-]{1,128}$')


def validate_string_length(
    value: Any,
    field_name: str,
    min_length: int = 1,
    max_length: int = 1000
) -> str:
    """
    Validate string length.

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")

    if len(value) < min_length:
        raise ValidationError(field_name, f"must be at least {min_length} characters")

    if len(value) > max_length:
        raise ValidationError(field_name, f"must not exceed {max_length} characters")

    return value


def validate_identity(value: Any, field_name: str = "identity") -> str:
    """
    Validate a wallet identity.

    Surrounding whitespace is stripped; internal whitespace is rejected.
    Case is preserved (comparisons elsewhere are case-insensitive).

    Returns:
        The stripped identity
    """
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")

    value = value.strip()
    if not value:
        raise ValidationError(field_name, "cannot be empty")

    validate_string_length(value, field_name, max_length=IDENTITY_MAX_LENGTH)

    if WHITESPACE_PATTERN.search(value):
        raise ValidationError(field_name, "must not contain whitespace")

    return value


def validate_identities(values: Optional[Iterable[Any]], field_name: str) -> Tuple[str, ...]:
    """Validate a list of identities, dropping case-insensitive duplicates."""
    if values is None:
        return ()
    if isinstance(values, str):
        raise ValidationError(field_name, "must be a list of identities")

    seen = set()
    result: List[str] = []
    for i, value in enumerate(values):
        identity = validate_identity(value, f"{field_name}[{i}]")
        if identity.lower() in seen:
            continue
        seen.add(identity.lower())
        result.append(identity)
    return tuple(result)


def validate_secret_code(value: Any, field_name: str = "secret_access_code") -> str:
    """
    Validate a secret access code.

    The code is returned unchanged: codes compare exactly, so no
    stripping or case folding happens here.
    """
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")
    if not value.strip():
        raise ValidationError(field_name, "cannot be empty")
    return validate_string_length(value, field_name, max_length=SECRET_CODE_MAX_LENGTH)


def validate_anchor_tx_id(value: Any, field_name: str = "anchor_tx_id") -> str:
    """Validate an anchor transaction identifier."""
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")
    value = value.strip()
    if not value:
        raise ValidationError(field_name, "cannot be empty")
    if WHITESPACE_PATTERN.search(value):
        raise ValidationError(field_name, "must not contain whitespace")
    return validate_string_length(value, field_name, max_length=ANCHOR_TX_ID_MAX_LENGTH)


def validate_proof_code(value: Any, field_name: str = "proof_code") -> str:
    """Validate a proof code as presented by a caller."""
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")
    value = value.strip()
    if not PROOF_CODE_PATTERN.match(value):
        raise ValidationError(field_name, "invalid format")
    return value


def validate_document(data: Any, max_bytes: int, field_name: str = "document") -> bytes:
    """
    Validate an uploaded document body.

    Raises:
        ValidationError: If the body is not bytes, empty, or too large
    """
    if not isinstance(data, (bytes, bytearray)):
        raise ValidationError(field_name, "must be bytes")
    if len(data) == 0:
        raise ValidationError(field_name, "cannot be empty")
    if len(data) > max_bytes:
        raise ValidationError(field_name, f"must not exceed {max_bytes} bytes")
    return bytes(data)


# ============================================================
# Log redaction
# ============================================================

REDACTED_FIELDS = frozenset({
    "secret_access_code",
    "secret_code",
    "encryption_key",
    "key",
    "allowed_viewers",
})


def sanitize_for_logging(data: Dict[str, Any], redact: Iterable[str] = REDACTED_FIELDS) -> Dict[str, Any]:
    """Copy ``data`` with sensitive values replaced, descending into nested dicts."""
    redact = frozenset(redact)
    return {
        k: "[REDACTED]" if k in redact
        else sanitize_for_logging(v, redact) if isinstance(v, dict)
        else v
        for k, v in data.items()
    }
