import pytest
from fastapi.testclient import TestClient

from proofseal import (
    InMemoryBlobStore,
    InMemoryPolicyStore,
    InMemoryProofStore,
    LocalAnchorService,
    ProofLifecycle,
)
from proofseal.api import create_app


@pytest.fixture
def lifecycle():
    """Fresh lifecycle with in-memory collaborators for each test."""
    return ProofLifecycle(
        policy_store=InMemoryPolicyStore(),
        blob_store=InMemoryBlobStore(),
        anchor_service=LocalAnchorService(),
        proof_store=InMemoryProofStore(),
    )


@pytest.fixture
def client(lifecycle):
    return TestClient(create_app(lifecycle))
