"""
ProofSeal error taxonomy.

Every failure raised by the seal layer and the proof lifecycle is a
SealError subclass with a stable ``code``. Callers can always tell
"you don't have access" (AccessDeniedError) from "the data is
corrupted" (IntegrityError).
"""

from typing import Any, Dict, Optional


class SealError(Exception):
    """Base class for all ProofSeal errors."""

    code = "SEAL_ERROR"

    def __init__(self, message: str):
        self.message = message
        # Set by the lifecycle when raised during registration
        self.step: Optional[str] = None
        self.draft: Optional[Any] = None
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        d = {"detail": self.code, "message": self.message}
        if self.step:
            d["step"] = self.step
        return d


class NotFoundError(SealError):
    """A seal object, proof record, or blob is absent."""

    code = "NOT_FOUND"

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class MissingCredentialError(SealError):
    """Neither an identity nor a secret code was supplied."""

    code = "MISSING_CREDENTIAL"

    def __init__(self, message: str = "Provide either an identity or a secret access code"):
        super().__init__(message)


class AccessDeniedError(SealError):
    """
    A credential was presented but the policy refuses it.

    ``mode`` and ``check`` identify which rule failed. The message never
    contains the expected secret code or the allowed-viewer list.
    """

    code = "ACCESS_DENIED"

    def __init__(self, mode: str, check: str, message: Optional[str] = None):
        self.mode = mode
        self.check = check
        super().__init__(message or f"Access denied ({mode}: {check})")


class IntegrityError(SealError):
    """
    Content failed a tamper check.

    ``stage`` is one of ``ciphertext_hash``, ``auth_tag`` or
    ``plaintext_hash``.
    """

    code = "INTEGRITY_FAILURE"

    def __init__(self, stage: str, message: Optional[str] = None):
        self.stage = stage
        super().__init__(message or f"Content failed tamper check ({stage})")


class ValidationError(SealError):
    """Raised when input validation fails."""

    code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")
