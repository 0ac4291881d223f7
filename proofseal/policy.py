"""
ProofSeal Policy Store

Maps an opaque seal object identifier to its owner, its symmetric key,
and its access policy. Seal objects are created once per encryption
event and are read-only afterwards.

The key is returned from ``create`` only so the caller can hand it
straight to the cipher engine; it is never part of any public view.
"""

import secrets
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from .cipher import generate_key
from .errors import NotFoundError, ValidationError
from .security import validate_identities, validate_identity, validate_secret_code
from .util import utc_now

SEAL_OBJECT_PREFIX = "seal_"
GENERATED_CODE_BYTES = 8  # 16 hex characters


class AccessMode(str, Enum):
    """
    Mutually exclusive access modes, chosen when the seal object is created.

    OWNER_ONLY: only the owner identity may decrypt
    SPECIFIC_WALLETS: the owner or any listed viewer may decrypt
    SECRET_CODE: whoever presents the exact secret access code may decrypt
    """
    OWNER_ONLY = "owner_only"
    SPECIFIC_WALLETS = "specific_wallets"
    SECRET_CODE = "secret_code"

    @classmethod
    def parse(cls, value: Any) -> "AccessMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise ValidationError("access_mode", f"must be one of: {allowed}")


def generate_secret_code() -> str:
    """Generate a 16 hex character secret access code."""
    return secrets.token_hex(GENERATED_CODE_BYTES)


@dataclass(frozen=True)
class AccessPolicy:
    """An immutable access policy."""
    mode: AccessMode
    allowed_viewers: Tuple[str, ...] = ()
    secret_access_code: Optional[str] = field(default=None, repr=False)

    @classmethod
    def build(
        cls,
        mode: Any,
        allowed_viewers: Optional[Iterable[str]] = None,
        secret_access_code: Optional[str] = None
    ) -> "AccessPolicy":
        """
        Build a validated policy.

        Viewers are only accepted in ``specific_wallets`` mode and a code
        only in ``secret_code`` mode. A ``secret_code`` policy must carry
        its code; generating one is the caller's job.
        """
        mode = AccessMode.parse(mode)
        viewers = validate_identities(allowed_viewers, "allowed_viewers")

        if viewers and mode != AccessMode.SPECIFIC_WALLETS:
            raise ValidationError("allowed_viewers", f"not accepted in {mode.value} mode")

        if mode == AccessMode.SECRET_CODE:
            if secret_access_code is None:
                raise ValidationError("secret_access_code", "required in secret_code mode")
            secret_access_code = validate_secret_code(secret_access_code)
        elif secret_access_code is not None:
            raise ValidationError("secret_access_code", f"not accepted in {mode.value} mode")

        return cls(mode=mode, allowed_viewers=viewers, secret_access_code=secret_access_code)

    def describe(self) -> Dict[str, Any]:
        """Public description: no code, no viewer list."""
        return {
            "mode": self.mode.value,
            "allowed_viewer_count": len(self.allowed_viewers),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Full serialization for storage backends only."""
        return {
            "mode": self.mode.value,
            "allowed_viewers": list(self.allowed_viewers),
            "secret_access_code": self.secret_access_code,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessPolicy":
        return cls(
            mode=AccessMode(data["mode"]),
            allowed_viewers=tuple(data.get("allowed_viewers") or ()),
            secret_access_code=data.get("secret_access_code"),
        )


@dataclass(frozen=True)
class SealObject:
    """One encryption event: owner, key, and policy."""
    object_id: str
    owner_identity: str
    encryption_key: bytes = field(repr=False)
    policy: AccessPolicy
    created_at: datetime


class PolicyStore(ABC):
    """
    Keyed store of seal objects.

    ``create`` generates the identifier and the key and inserts the
    record as one unit; subclasses only implement storage.
    """

    def __init__(self, key_factory: Callable[[], bytes] = generate_key):
        self._key_factory = key_factory

    def create(self, owner_identity: str, policy: AccessPolicy) -> Tuple[str, bytes]:
        """
        Create a seal object.

        Returns:
            Tuple of (object_id, key). The key is for immediate use by
            the cipher engine only.
        """
        owner_identity = validate_identity(owner_identity, "owner_identity")
        if not isinstance(policy, AccessPolicy):
            raise ValidationError("policy", "must be an AccessPolicy")

        seal = SealObject(
            object_id=f"{SEAL_OBJECT_PREFIX}{secrets.token_hex(16)}",
            owner_identity=owner_identity,
            encryption_key=self._key_factory(),
            policy=policy,
            created_at=utc_now(),
        )
        self._insert(seal)
        return seal.object_id, seal.encryption_key

    def lookup(self, object_id: str) -> SealObject:
        """
        Get a seal object.

        Raises:
            NotFoundError: If no object has this identifier
        """
        seal = self._get(object_id)
        if seal is None:
            raise NotFoundError("seal object", object_id)
        return seal

    @abstractmethod
    def _insert(self, seal: SealObject) -> None:
        """Insert a new seal object; identifiers are never reused."""

    @abstractmethod
    def _get(self, object_id: str) -> Optional[SealObject]:
        """Return the seal object or None."""

    @abstractmethod
    def count(self) -> int:
        """Number of stored seal objects."""


class InMemoryPolicyStore(PolicyStore):
    """Thread-safe in-process policy store."""

    def __init__(self, key_factory: Callable[[], bytes] = generate_key):
        super().__init__(key_factory)
        self._objects: Dict[str, SealObject] = {}
        self._lock = threading.RLock()

    def _insert(self, seal: SealObject) -> None:
        with self._lock:
            if seal.object_id in self._objects:
                raise ValidationError("object_id", "already exists")
            self._objects[seal.object_id] = seal

    def _get(self, object_id: str) -> Optional[SealObject]:
        with self._lock:
            return self._objects.get(object_id)

    def count(self) -> int:
        with self._lock:
            return len(self._objects)
