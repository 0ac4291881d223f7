"""
ProofSeal

Tamper-evident, access-controlled document proofs.

A document is hashed, encrypted under an access policy, stored in an
untrusted blob store, and anchored by a registration record. A third
party can later verify it and, if the policy allows, decrypt it.

Components:
- Cipher engine: authenticated encryption over byte buffers
- Policy store: seal object id -> owner, key, policy
- Access evaluator: owner_only / specific_wallets / secret_code rules
- Integrity verifier: SHA-256 digests checked on every retrieval
- Proof lifecycle: register, retrieve, verify, confirm anchor

Usage:
    from proofseal import (
        ProofLifecycle,
        InMemoryPolicyStore,
        InMemoryProofStore,
        InMemoryBlobStore,
        LocalAnchorService,
        Credential,
    )

    lifecycle = ProofLifecycle(
        policy_store=InMemoryPolicyStore(),
        blob_store=InMemoryBlobStore(),
        anchor_service=LocalAnchorService(),
        proof_store=InMemoryProofStore(),
    )

    result = lifecycle.register(pdf_bytes, "0xabc", access_mode="secret_code")
    code = result.secret_access_code  # shown once

    pdf = lifecycle.retrieve(result.record.proof_code, Credential.of(secret_code=code))
"""

__version__ = "1.0.0"

from .errors import (
    SealError,
    NotFoundError,
    MissingCredentialError,
    AccessDeniedError,
    IntegrityError,
    ValidationError,
)

from .cipher import CipherEngine, encrypt, decrypt, generate_key
from .hashing import hash_of, verify_digest, digest_matches

from .policy import (
    AccessMode,
    AccessPolicy,
    SealObject,
    PolicyStore,
    InMemoryPolicyStore,
    generate_secret_code,
)

from .evaluator import AccessEvaluator, AccessDecision, Credential, Check

from .records import ProofRecord, ProofStore, InMemoryProofStore
from .blobs import BlobStore, StoredBlob, InMemoryBlobStore, FileSystemBlobStore, WalrusBlobStore
from .anchor import AnchorService, AnchorRequest, AnchorReceipt, LocalAnchorService
from .db import Database, SqlitePolicyStore, SqliteProofStore

from .lifecycle import (
    ProofLifecycle,
    RegistrationDraft,
    RegistrationResult,
    DraftStage,
    build_lifecycle,
)


__all__ = [
    "__version__",

    # Errors
    "SealError",
    "NotFoundError",
    "MissingCredentialError",
    "AccessDeniedError",
    "IntegrityError",
    "ValidationError",

    # Cipher and hashing
    "CipherEngine",
    "encrypt",
    "decrypt",
    "generate_key",
    "hash_of",
    "verify_digest",
    "digest_matches",

    # Policy
    "AccessMode",
    "AccessPolicy",
    "SealObject",
    "PolicyStore",
    "InMemoryPolicyStore",
    "generate_secret_code",

    # Evaluator
    "AccessEvaluator",
    "AccessDecision",
    "Credential",
    "Check",

    # Collaborators
    "ProofRecord",
    "ProofStore",
    "InMemoryProofStore",
    "BlobStore",
    "StoredBlob",
    "InMemoryBlobStore",
    "FileSystemBlobStore",
    "WalrusBlobStore",
    "AnchorService",
    "AnchorRequest",
    "AnchorReceipt",
    "LocalAnchorService",
    "Database",
    "SqlitePolicyStore",
    "SqliteProofStore",

    # Lifecycle
    "ProofLifecycle",
    "RegistrationDraft",
    "RegistrationResult",
    "DraftStage",
    "build_lifecycle",
]
