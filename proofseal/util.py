"""
Utility functions for ProofSeal.

Hashing and time helpers.
"""

import hashlib
import hmac
from datetime import datetime, timezone
from typing import Union


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 hash and return as lowercase hex string."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def utc_now() -> datetime:
    """Get current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


RFC3339_FORMAT = '%Y-%m-%dT%H:%M:%S.%fZ'


def utc_rfc3339(dt: datetime) -> str:
    """
    Format an aware datetime as an RFC3339 UTC string.

    Always six fractional digits, so stored values sort as strings.
    """
    return dt.astimezone(timezone.utc).strftime(RFC3339_FORMAT)


def parse_rfc3339(s: str) -> datetime:
    """Parse an RFC3339 UTC string, with or without fractional seconds."""
    fmt = RFC3339_FORMAT if '.' in s else '%Y-%m-%dT%H:%M:%SZ'
    return datetime.strptime(s, fmt).replace(tzinfo=timezone.utc)


def constant_time_compare(a: Union[str, bytes], b: Union[str, bytes]) -> bool:
    """
    Compare two strings/bytes in constant time to prevent timing attacks.
    """
    if isinstance(a, str):
        a = a.encode('utf-8')
    if isinstance(b, str):
        b = b.encode('utf-8')
    return hmac.compare_digest(a, b)
