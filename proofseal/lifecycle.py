"""
ProofSeal proof record lifecycle.

Registration:  hash -> resolve policy -> seal (key from policy store,
               encrypt) -> hash ciphertext -> upload -> anchor -> persist
Retrieval:     lookup -> fetch -> evaluate access -> verify ciphertext
               hash -> decrypt -> verify plaintext hash

Registration is not atomic. Each attempt is tracked as a
RegistrationDraft; when a step fails the draft is attached to the
raised error and kept in ``incomplete_registrations()``. Nothing that
already happened (seal object, uploaded blob, anchor) is undone. Only
the newest ``max_incomplete_registrations`` drafts are kept.
"""

import logging
import threading
import uuid
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, Iterable, List, Optional

from . import config
from .anchor import AnchorRequest, AnchorService, LocalAnchorService
from .blobs import BlobStore, get_blob_store
from .cipher import CipherEngine
from .db import Database, get_policy_store, get_proof_store
from .errors import IntegrityError, NotFoundError, SealError
from .evaluator import AccessEvaluator, Credential
from .hashing import CIPHERTEXT_HASH, PLAINTEXT_HASH, hash_of, verify_digest
from .logging_config import AuditLogger, audit_log
from .policy import AccessMode, AccessPolicy, PolicyStore, generate_secret_code
from .records import ProofRecord, ProofStore
from .security import (
    sanitize_for_logging,
    validate_anchor_tx_id,
    validate_document,
    validate_identity,
    validate_proof_code,
    validate_string_length,
)
from .util import utc_now, utc_rfc3339

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_NAME = "document.pdf"


class DraftStage(str, Enum):
    """How far a registration got."""
    RECEIVED = "received"
    HASHED = "hashed"
    SEALED = "sealed"
    STORED = "stored"
    ANCHORED = "anchored"
    PERSISTED = "persisted"


@dataclass
class RegistrationDraft:
    """Progress of one registration attempt."""
    draft_id: str
    owner_identity: str
    document_name: str
    stage: DraftStage = DraftStage.RECEIVED
    started_at: datetime = field(default_factory=utc_now)
    access_mode: Optional[str] = None
    plaintext_hash: Optional[str] = None
    seal_object_id: Optional[str] = None
    ciphertext_hash: Optional[str] = None
    content_id: Optional[str] = None
    storage_url: Optional[str] = None
    anchor_tx_id: Optional[str] = None
    proof_code: Optional[str] = None
    failed_step: Optional[str] = None
    error: Optional[str] = None

    def advance(self, stage: DraftStage, **fields) -> None:
        for name, value in fields.items():
            setattr(self, name, value)
        self.stage = stage

    def has_side_effects(self) -> bool:
        """True once something outside the caller has been written."""
        return self.stage not in (DraftStage.RECEIVED, DraftStage.HASHED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "draft_id": self.draft_id,
            "owner_identity": self.owner_identity,
            "document_name": self.document_name,
            "stage": self.stage.value,
            "started_at": utc_rfc3339(self.started_at),
            "access_mode": self.access_mode,
            "plaintext_hash": self.plaintext_hash,
            "seal_object_id": self.seal_object_id,
            "ciphertext_hash": self.ciphertext_hash,
            "content_id": self.content_id,
            "storage_url": self.storage_url,
            "anchor_tx_id": self.anchor_tx_id,
            "proof_code": self.proof_code,
            "failed_step": self.failed_step,
            "error": self.error,
        }


@dataclass(frozen=True)
class RegistrationResult:
    """
    Outcome of a successful registration.

    ``secret_access_code`` is set only in secret_code mode. When it was
    generated, this is the only place it is ever surfaced.
    """
    record: ProofRecord
    access_mode: AccessMode
    secret_access_code: Optional[str] = field(default=None, repr=False)
    code_generated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = {"proof": self.record.to_dict(), "access_mode": self.access_mode.value}
        if self.secret_access_code is not None:
            d["secret_access_code"] = self.secret_access_code
            d["code_generated"] = self.code_generated
        return d


class ProofLifecycle:
    """
    Orchestrates the seal layer and the external collaborators.

    All collaborators are injected; nothing here is a module global.
    """

    def __init__(
        self,
        policy_store: PolicyStore,
        blob_store: BlobStore,
        anchor_service: AnchorService,
        proof_store: ProofStore,
        cipher: Optional[CipherEngine] = None,
        evaluator: Optional[AccessEvaluator] = None,
        audit: Optional[AuditLogger] = None,
        max_document_bytes: int = config.MAX_DOCUMENT_BYTES,
        max_incomplete_registrations: int = 1000
    ):
        self.policy_store = policy_store
        self.blob_store = blob_store
        self.anchor_service = anchor_service
        self.proof_store = proof_store
        self.cipher = cipher or CipherEngine()
        self.audit = audit or audit_log
        self.evaluator = evaluator or AccessEvaluator(policy_store, audit=self.audit)
        self.max_document_bytes = max_document_bytes
        self._incomplete: Deque[RegistrationDraft] = deque(maxlen=max_incomplete_registrations)
        self._incomplete_lock = threading.Lock()

    # ============================================================
    # Registration
    # ============================================================

    @contextmanager
    def _step(self, draft: RegistrationDraft, step: str):
        try:
            yield
        except Exception as e:
            draft.failed_step = step
            draft.error = f"{type(e).__name__}: {e}"
            if isinstance(e, SealError):
                e.step = step
                e.draft = draft
            if draft.has_side_effects():
                with self._incomplete_lock:
                    self._incomplete.append(draft)
            partial = sanitize_for_logging(draft.to_dict())
            partial.pop("draft_id", None)
            partial.pop("error", None)
            self.audit.registration_failed(draft.draft_id, step, draft.error, **partial)
            raise
        self.audit.registration_step(draft.draft_id, step, stage=draft.stage.value)

    def register(
        self,
        document: bytes,
        owner_identity: str,
        access_mode: Any = AccessMode.OWNER_ONLY,
        allowed_viewers: Optional[Iterable[str]] = None,
        secret_access_code: Optional[str] = None,
        document_name: Optional[str] = None,
        expected_plaintext_hash: Optional[str] = None
    ) -> RegistrationResult:
        """
        Register a document.

        Args:
            document: Raw document bytes
            owner_identity: Identity of the registering owner
            access_mode: owner_only, specific_wallets, or secret_code
            allowed_viewers: Viewer identities (specific_wallets only)
            secret_access_code: Code to use (secret_code only); generated
                when omitted
            document_name: Name passed to the blob store
            expected_plaintext_hash: Digest computed by the uploader; when
                given, the received bytes must match it

        Returns:
            RegistrationResult with the persisted record

        Raises:
            ValidationError, IntegrityError, or whatever a collaborator
            raises, annotated with the failing ``step`` when a SealError
        """
        draft = RegistrationDraft(
            draft_id=uuid.uuid4().hex,
            owner_identity=owner_identity if isinstance(owner_identity, str) else "",
            document_name=document_name or DEFAULT_DOCUMENT_NAME,
        )

        with self._step(draft, "validate"):
            document = validate_document(document, self.max_document_bytes)
            owner_identity = validate_identity(owner_identity, "owner_identity")
            draft.owner_identity = owner_identity
            if document_name is not None:
                validate_string_length(document_name, "document_name", max_length=255)

        with self._step(draft, "hash_plaintext"):
            plaintext_hash = hash_of(document)
            if expected_plaintext_hash is not None:
                verify_digest(expected_plaintext_hash, document, PLAINTEXT_HASH)
            draft.advance(DraftStage.HASHED, plaintext_hash=plaintext_hash)

        with self._step(draft, "resolve_policy"):
            mode = AccessMode.parse(access_mode)
            code_generated = False
            if mode == AccessMode.SECRET_CODE and secret_access_code is None:
                secret_access_code = generate_secret_code()
                code_generated = True
            policy = AccessPolicy.build(mode, allowed_viewers, secret_access_code)
            draft.access_mode = mode.value

        with self._step(draft, "encrypt"):
            seal_object_id, key = self.policy_store.create(owner_identity, policy)
            draft.advance(DraftStage.SEALED, seal_object_id=seal_object_id)
            self.audit.seal_created(seal_object_id, owner_identity, mode.value)
            ciphertext = self.cipher.encrypt(document, key)
            del key

        with self._step(draft, "hash_ciphertext"):
            ciphertext_hash = hash_of(ciphertext)
            draft.ciphertext_hash = ciphertext_hash

        with self._step(draft, "upload"):
            stored = self.blob_store.put(ciphertext, draft.document_name)
            draft.advance(DraftStage.STORED, content_id=stored.content_id, storage_url=stored.storage_url)

        with self._step(draft, "anchor"):
            receipt = self.anchor_service.register(AnchorRequest(
                plaintext_hash=plaintext_hash,
                content_id=stored.content_id,
                owner_identity=owner_identity,
                seal_object_id=seal_object_id,
                ciphertext_hash=ciphertext_hash,
            ))
            draft.advance(DraftStage.ANCHORED, anchor_tx_id=receipt.anchor_tx_id, proof_code=receipt.proof_code)

        with self._step(draft, "persist"):
            record = self.proof_store.create(ProofRecord(
                proof_code=receipt.proof_code,
                owner_address=owner_identity,
                plaintext_hash=plaintext_hash,
                ciphertext_hash=ciphertext_hash,
                seal_object_id=seal_object_id,
                content_id=stored.content_id,
                storage_url=stored.storage_url,
                anchor_tx_id=receipt.anchor_tx_id,
                created_at=utc_now(),
                document_name=draft.document_name,
            ))
            draft.advance(DraftStage.PERSISTED)

        self.audit.registration_complete(record.proof_code, owner_identity, mode.value)
        return RegistrationResult(
            record=record,
            access_mode=mode,
            secret_access_code=secret_access_code if mode == AccessMode.SECRET_CODE else None,
            code_generated=code_generated,
        )

    def incomplete_registrations(self) -> List[RegistrationDraft]:
        """Most recent registrations that failed after writing to a collaborator."""
        with self._incomplete_lock:
            return list(self._incomplete)

    # ============================================================
    # Lookup
    # ============================================================

    def get_proof(self, proof_code: str) -> ProofRecord:
        """
        Get a proof record by code.

        Raises:
            NotFoundError: If no record has this code
        """
        proof_code = validate_proof_code(proof_code)
        record = self.proof_store.get_by_code(proof_code)
        if record is None:
            raise NotFoundError("proof", proof_code)
        return record

    def proofs_for_owner(self, owner_identity: str) -> List[ProofRecord]:
        """All records registered by an owner (case-insensitive)."""
        owner_identity = validate_identity(owner_identity, "owner_identity")
        return self.proof_store.list_by_owner(owner_identity)

    def access_mode_of(self, record: ProofRecord) -> AccessMode:
        """The access mode governing a record's decryption."""
        return self.policy_store.lookup(record.seal_object_id).policy.mode

    # ============================================================
    # Retrieval
    # ============================================================

    def retrieve(self, proof_code: str, credential: Credential) -> bytes:
        """
        Fetch, check, and decrypt a registered document.

        Raises:
            NotFoundError: Unknown proof code or missing blob
            MissingCredentialError / AccessDeniedError: From the evaluator
            IntegrityError: Ciphertext hash mismatch (decryption is never
                attempted), tag failure, or plaintext hash mismatch
        """
        record = self.get_proof(proof_code)

        ciphertext = self.blob_store.get(record.content_id)
        if ciphertext is None:
            raise NotFoundError("blob", record.content_id)

        key = self.evaluator.evaluate(record.seal_object_id, credential)

        try:
            verify_digest(record.ciphertext_hash, ciphertext, CIPHERTEXT_HASH)
            plaintext = self.cipher.decrypt(ciphertext, key)
            verify_digest(record.plaintext_hash, plaintext, PLAINTEXT_HASH)
        except IntegrityError as e:
            self.audit.integrity_failure(e.stage, proof_code=record.proof_code, content_id=record.content_id)
            raise

        logger.debug("Retrieved %s (%d bytes)", record.proof_code, len(plaintext))
        return plaintext

    def verify_document(self, proof_code: str, document: bytes) -> ProofRecord:
        """
        Check that a copy of a document is the one registered.

        Raises:
            NotFoundError: Unknown proof code
            IntegrityError: The document's digest differs
        """
        record = self.get_proof(proof_code)
        document = validate_document(document, self.max_document_bytes)
        verify_digest(record.plaintext_hash, document, PLAINTEXT_HASH)
        return record

    # ============================================================
    # Anchor update
    # ============================================================

    def confirm_anchor(self, proof_code: str, anchor_tx_id: str) -> ProofRecord:
        """
        Replace a record's anchor transaction id. The last write wins.

        Raises:
            NotFoundError: Unknown proof code
        """
        proof_code = validate_proof_code(proof_code)
        anchor_tx_id = validate_anchor_tx_id(anchor_tx_id)

        swapped = self.proof_store.swap_anchor_tx_id(proof_code, anchor_tx_id)
        if swapped is None:
            raise NotFoundError("proof", proof_code)
        previous, updated = swapped

        self.audit.anchor_updated(proof_code, previous, updated.anchor_tx_id)
        return updated


def build_lifecycle(db: Optional[Database] = None) -> ProofLifecycle:
    """Create a lifecycle wired to the backends selected by configuration."""
    if config.is_production() and (config.STORE_BACKEND == "memory" or config.BLOB_BACKEND == "memory"):
        logger.warning("In-memory backends selected in production; data will not survive a restart")

    if config.STORE_BACKEND == "sqlite" and db is None:
        db = Database(config.DB_PATH)

    return ProofLifecycle(
        policy_store=get_policy_store(db),
        blob_store=get_blob_store(),
        anchor_service=LocalAnchorService(),
        proof_store=get_proof_store(db),
    )
