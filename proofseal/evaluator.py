"""
ProofSeal Access Evaluator

Decides whether a decryption request may receive the key of a seal
object. The evaluator never mutates anything and is safe to call
concurrently.

Precedence when both credentials are present:
1. A secret code is checked first. In ``secret_code`` mode a match
   grants and a mismatch denies immediately, with no identity fallback.
2. Otherwise the identity is checked against the mode's rule.

Identity comparisons are case-insensitive; code comparisons are exact
and constant-time.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .errors import AccessDeniedError, MissingCredentialError
from .logging_config import AuditLogger, audit_log
from .policy import AccessMode, PolicyStore, SealObject
from .security import validate_identity, validate_secret_code
from .util import constant_time_compare


class Check(str, Enum):
    """Which rule decided the request."""
    OWNER_MATCH = "owner_match"
    VIEWER_MATCH = "viewer_match"
    CODE_MATCH = "code_match"
    NOT_OWNER = "not_owner"
    NOT_OWNER_OR_VIEWER = "not_owner_or_viewer"
    CODE_MISMATCH = "code_mismatch"
    CODE_REQUIRED = "code_required"
    CODE_NOT_ACCEPTED = "code_not_accepted"


@dataclass(frozen=True)
class Credential:
    """
    A decryption credential: an identity, a secret code, or both.

    Blank strings are treated as absent.
    """
    identity: Optional[str] = None
    secret_code: Optional[str] = field(default=None, repr=False)

    @classmethod
    def of(cls, identity: Optional[str] = None, secret_code: Optional[str] = None) -> "Credential":
        if identity is not None and not identity.strip():
            identity = None
        if secret_code is not None and secret_code == "":
            secret_code = None
        return cls(identity=identity, secret_code=secret_code)

    def is_empty(self) -> bool:
        return self.identity is None and self.secret_code is None


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of a granted request."""
    seal_object_id: str
    mode: AccessMode
    check: Check
    key: bytes = field(repr=False)


def _same_identity(a: str, b: str) -> bool:
    return a.lower() == b.lower()


class AccessEvaluator:
    """Grants or denies access to seal objects under their policies."""

    def __init__(self, policy_store: PolicyStore, audit: Optional[AuditLogger] = None):
        self.policy_store = policy_store
        self.audit = audit or audit_log

    def evaluate(self, object_id: str, credential: Credential) -> bytes:
        """
        Evaluate a request and return the object's key on grant.

        Raises:
            NotFoundError: If the object does not exist
            MissingCredentialError: If neither identity nor code is supplied
            ValidationError: If a supplied credential is malformed
            AccessDeniedError: If the policy refuses the credential
        """
        return self.decide(object_id, credential).key

    def decide(self, object_id: str, credential: Credential) -> AccessDecision:
        """Like ``evaluate`` but returns which rule granted access."""
        seal = self.policy_store.lookup(object_id)

        if credential is None or credential.is_empty():
            self.audit.security_event("missing_credential", severity="low", seal_object_id=object_id)
            raise MissingCredentialError()

        identity = None
        if credential.identity is not None:
            identity = validate_identity(credential.identity)
        code = None
        if credential.secret_code is not None:
            code = validate_secret_code(credential.secret_code, "secret_code")

        mode = seal.policy.mode
        try:
            check = self._apply_rules(seal, identity, code)
        except AccessDeniedError as e:
            self.audit.access_decision(
                seal.object_id, False, mode.value, e.check,
                identity=identity, code_presented=code is not None
            )
            raise

        self.audit.access_decision(
            seal.object_id, True, mode.value, check.value,
            identity=identity, code_presented=code is not None
        )
        return AccessDecision(
            seal_object_id=seal.object_id,
            mode=mode,
            check=check,
            key=seal.encryption_key,
        )

    def _apply_rules(self, seal: SealObject, identity: Optional[str], code: Optional[str]) -> Check:
        policy = seal.policy
        mode = policy.mode

        if mode == AccessMode.SECRET_CODE:
            if code is None:
                raise AccessDeniedError(mode.value, Check.CODE_REQUIRED.value,
                                        "Access denied. A secret access code is required.")
            if constant_time_compare(code, policy.secret_access_code):
                return Check.CODE_MATCH
            raise AccessDeniedError(mode.value, Check.CODE_MISMATCH.value,
                                    "Access denied. Invalid secret access code.")

        if identity is None:
            # Only a code was presented, and this mode does not take codes
            raise AccessDeniedError(mode.value, Check.CODE_NOT_ACCEPTED.value,
                                    "Access denied. This document is not shared by access code.")

        if _same_identity(identity, seal.owner_identity):
            return Check.OWNER_MATCH

        if mode == AccessMode.SPECIFIC_WALLETS:
            if any(_same_identity(identity, v) for v in policy.allowed_viewers):
                return Check.VIEWER_MATCH
            raise AccessDeniedError(mode.value, Check.NOT_OWNER_OR_VIEWER.value,
                                    f"Access denied. Wallet {identity} is not authorized to decrypt this document.")

        raise AccessDeniedError(mode.value, Check.NOT_OWNER.value,
                                f"Access denied. Wallet {identity} is not authorized to decrypt this document.")
