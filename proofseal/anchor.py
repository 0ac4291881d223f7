"""
Anchor service boundary.

The anchoring system records a registration and hands back a
transaction id and the proof code that becomes the record's key.
"""

import secrets
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class AnchorRequest:
    plaintext_hash: str
    content_id: str
    owner_identity: str
    seal_object_id: str
    ciphertext_hash: str


@dataclass(frozen=True)
class AnchorReceipt:
    anchor_tx_id: str
    proof_code: str


class AnchorService(ABC):
    """Registers a proof with the anchoring system."""

    @abstractmethod
    def register(self, request: AnchorRequest) -> AnchorReceipt:
        pass


class LocalAnchorService(AnchorService):
    """
    Process-local anchor.

    Proof codes are ``PRF-`` plus 12 upper-case hex characters and are
    not reused within the last ``history`` registrations, which is also
    how many requests are kept. With ``provisional=True`` transaction ids
    carry a ``pending:`` prefix until confirmed through the lifecycle.
    """

    PROOF_CODE_PREFIX = "PRF-"
    PENDING_PREFIX = "pending:"

    def __init__(self, provisional: bool = False, history: int = 1024):
        self.provisional = provisional
        # Most recent requests only
        self.requests: Deque[AnchorRequest] = deque(maxlen=history)
        self._recent_codes: Deque[str] = deque(maxlen=history)
        self._lock = threading.Lock()

    def _new_proof_code(self) -> str:
        while True:
            code = self.PROOF_CODE_PREFIX + secrets.token_hex(6).upper()
            if code not in self._recent_codes:
                self._recent_codes.append(code)
                return code

    def register(self, request: AnchorRequest) -> AnchorReceipt:
        tx_id = "0x" + secrets.token_hex(32)
        if self.provisional:
            tx_id = self.PENDING_PREFIX + tx_id
        with self._lock:
            self.requests.append(request)
            proof_code = self._new_proof_code()
        return AnchorReceipt(anchor_tx_id=tx_id, proof_code=proof_code)
