from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class ProofRecordOut(BaseModel):
    proof_code: str
    owner_address: str
    plaintext_hash: str
    ciphertext_hash: str
    seal_object_id: str
    content_id: str
    storage_url: str
    anchor_tx_id: str
    created_at: str
    document_name: Optional[str] = None
    access_mode: str


class RegistrationOut(BaseModel):
    proof: ProofRecordOut
    access_mode: str
    secret_access_code: Optional[str] = None
    code_generated: Optional[bool] = None


class DecryptRequest(BaseModel):
    identity: Optional[str] = None
    secret_code: Optional[str] = None


class AnchorUpdateRequest(BaseModel):
    anchor_tx_id: str = Field(min_length=1)


class VerifyOut(BaseModel):
    proof_code: str
    match: bool
    plaintext_hash: str


class HealthOut(BaseModel):
    status: str
    env: str
    checks: Dict[str, bool]
    stores: Dict[str, Any] = Field(default_factory=dict)


class ErrorOut(BaseModel):
    detail: str
    message: str
    step: Optional[str] = None
