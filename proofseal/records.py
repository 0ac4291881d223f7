"""
Proof records and their persistence interface.

A proof record is immutable once created, with one exception: its
anchor transaction id may be replaced (provisional -> confirmed).
"""

import dataclasses
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .errors import ValidationError
from .util import parse_rfc3339, utc_rfc3339


@dataclass(frozen=True)
class ProofRecord:
    """One registered document."""
    proof_code: str
    owner_address: str
    plaintext_hash: str
    ciphertext_hash: str
    seal_object_id: str
    content_id: str
    storage_url: str
    anchor_tx_id: str
    created_at: datetime
    document_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proof_code": self.proof_code,
            "owner_address": self.owner_address,
            "plaintext_hash": self.plaintext_hash,
            "ciphertext_hash": self.ciphertext_hash,
            "seal_object_id": self.seal_object_id,
            "content_id": self.content_id,
            "storage_url": self.storage_url,
            "anchor_tx_id": self.anchor_tx_id,
            "created_at": utc_rfc3339(self.created_at),
            "document_name": self.document_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProofRecord":
        created_at = data["created_at"]
        if isinstance(created_at, str):
            created_at = parse_rfc3339(created_at)
        return cls(
            proof_code=data["proof_code"],
            owner_address=data["owner_address"],
            plaintext_hash=data["plaintext_hash"],
            ciphertext_hash=data["ciphertext_hash"],
            seal_object_id=data["seal_object_id"],
            content_id=data["content_id"],
            storage_url=data["storage_url"],
            anchor_tx_id=data["anchor_tx_id"],
            created_at=created_at,
            document_name=data.get("document_name"),
        )


class ProofStore(ABC):
    """Keyed store of proof records, looked up by code and by owner."""

    @abstractmethod
    def create(self, record: ProofRecord) -> ProofRecord:
        """
        Persist a new record.

        Raises:
            ValidationError: If a record with the same proof code exists
        """

    @abstractmethod
    def get_by_code(self, proof_code: str) -> Optional[ProofRecord]:
        """Return the record or None."""

    @abstractmethod
    def list_by_owner(self, owner_address: str) -> List[ProofRecord]:
        """Records whose owner matches case-insensitively, oldest first."""

    @abstractmethod
    def swap_anchor_tx_id(self, proof_code: str, anchor_tx_id: str) -> Optional[Tuple[str, ProofRecord]]:
        """
        Replace the anchor transaction id; last write wins.

        Returns (previous anchor_tx_id, updated record) read in the same
        atomic step as the write, or None if the code is unknown.
        """

    def update_anchor_tx_id(self, proof_code: str, anchor_tx_id: str) -> Optional[ProofRecord]:
        """Replace the anchor transaction id; last write wins. None if unknown."""
        swapped = self.swap_anchor_tx_id(proof_code, anchor_tx_id)
        return swapped[1] if swapped else None

    @abstractmethod
    def count(self) -> int:
        """Number of stored records."""


class InMemoryProofStore(ProofStore):
    """Thread-safe in-process proof store."""

    def __init__(self):
        self._records: Dict[str, ProofRecord] = {}
        self._lock = threading.RLock()

    def create(self, record: ProofRecord) -> ProofRecord:
        with self._lock:
            if record.proof_code in self._records:
                raise ValidationError("proof_code", "already registered")
            self._records[record.proof_code] = record
            return record

    def get_by_code(self, proof_code: str) -> Optional[ProofRecord]:
        with self._lock:
            return self._records.get(proof_code)

    def list_by_owner(self, owner_address: str) -> List[ProofRecord]:
        owner = owner_address.lower()
        with self._lock:
            matches = [r for r in self._records.values() if r.owner_address.lower() == owner]
        return sorted(matches, key=lambda r: r.created_at)

    def swap_anchor_tx_id(self, proof_code: str, anchor_tx_id: str) -> Optional[Tuple[str, ProofRecord]]:
        with self._lock:
            record = self._records.get(proof_code)
            if record is None:
                return None
            updated = dataclasses.replace(record, anchor_tx_id=anchor_tx_id)
            self._records[proof_code] = updated
            return record.anchor_tx_id, updated

    def count(self) -> int:
        with self._lock:
            return len(self._records)
