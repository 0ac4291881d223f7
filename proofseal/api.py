"""
HTTP surface for ProofSeal.

The lifecycle is injected through ``create_app`` and kept on
``app.state``; handlers never reach for module globals. Without an
injected lifecycle one is built from configuration on first use, so
the server is started through the factory:

    uvicorn --factory proofseal.api:create_app
"""

import logging
import threading
from typing import List, Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from . import config
from .errors import (
    AccessDeniedError,
    IntegrityError,
    MissingCredentialError,
    NotFoundError,
    SealError,
    ValidationError,
)
from .evaluator import Credential
from .lifecycle import ProofLifecycle, RegistrationResult, build_lifecycle
from .logging_config import configure_logging, set_request_id
from .models import (
    AnchorUpdateRequest,
    DecryptRequest,
    ErrorOut,
    HealthOut,
    ProofRecordOut,
    RegistrationOut,
    VerifyOut,
)
from .records import ProofRecord

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (MissingCredentialError, 401),
    (AccessDeniedError, 403),
    (IntegrityError, 409),
    (ValidationError, 422),
)


def status_for(exc: SealError) -> int:
    for cls, status in STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return status
    return 500


def _attachment_name(name: Optional[str]) -> str:
    name = (name or "document.pdf").replace('"', "").replace("\\", "").replace("\r", "").replace("\n", "")
    return name or "document.pdf"


def _read_upload(document: UploadFile) -> bytes:
    if document.content_type not in config.ALLOWED_MEDIA_TYPES:
        raise HTTPException(400, "UNSUPPORTED_MEDIA_TYPE")
    data = document.file.read(config.MAX_DOCUMENT_BYTES + 1)
    if len(data) > config.MAX_DOCUMENT_BYTES:
        raise HTTPException(413, "DOCUMENT_TOO_LARGE")
    return data


def create_app(lifecycle: Optional[ProofLifecycle] = None, configure_logs: bool = False) -> FastAPI:
    """Build the FastAPI application around a lifecycle."""
    if configure_logs:
        configure_logging(config.LOG_LEVEL, config.LOG_JSON, config.LOG_FILE)

    app = FastAPI(title="ProofSeal", debug=config.is_debug())
    app.state.lifecycle = lifecycle
    build_lock = threading.Lock()

    def _lifecycle() -> ProofLifecycle:
        if app.state.lifecycle is None:
            with build_lock:
                if app.state.lifecycle is None:
                    app.state.lifecycle = build_lifecycle()
        return app.state.lifecycle

    def _public(record: ProofRecord) -> ProofRecordOut:
        return ProofRecordOut(**record.to_dict(), access_mode=_lifecycle().access_mode_of(record).value)

    @app.middleware("http")
    async def _request_id(request: Request, call_next):
        request_id = set_request_id(request.headers.get("x-request-id"))
        response = await call_next(request)
        response.headers["x-request-id"] = request_id
        return response

    @app.exception_handler(SealError)
    async def _seal_error(request: Request, exc: SealError):
        body = ErrorOut(**exc.to_dict())
        return JSONResponse(status_code=status_for(exc), content=body.model_dump(exclude_none=True))

    @app.get("/health", response_model=HealthOut)
    def health():
        checks = config.validate_config()
        stores = {}
        try:
            lc = _lifecycle()
        except SealError as e:
            logger.error("Backends unavailable: %s", e)
            checks["lifecycle"] = False
        else:
            stores = {
                "seal_objects": lc.policy_store.count(),
                "proof_records": lc.proof_store.count(),
            }
        return HealthOut(
            status="ok" if all(checks.values()) else "degraded",
            env=config.ENV,
            checks=checks,
            stores=stores,
        )

    @app.post("/api/proof/register", status_code=201, response_model=RegistrationOut)
    def register_proof(
        document: UploadFile = File(...),
        owner_address: str = Form(...),
        access_mode: str = Form("owner_only"),
        allowed_viewers: Optional[List[str]] = Form(None),
        secret_access_code: Optional[str] = Form(None),
        plaintext_hash: Optional[str] = Form(None),
    ):
        data = _read_upload(document)
        result: RegistrationResult = _lifecycle().register(
            data,
            owner_address,
            access_mode=access_mode,
            allowed_viewers=[v for v in (allowed_viewers or []) if v.strip()] or None,
            secret_access_code=secret_access_code or None,
            document_name=document.filename or None,
            expected_plaintext_hash=plaintext_hash or None,
        )
        return RegistrationOut(
            proof=_public(result.record),
            access_mode=result.access_mode.value,
            secret_access_code=result.secret_access_code,
            code_generated=result.code_generated if result.secret_access_code is not None else None,
        )

    @app.get("/api/proof/{proof_code}", response_model=ProofRecordOut)
    def get_proof(proof_code: str):
        return _public(_lifecycle().get_proof(proof_code))

    @app.get("/api/proofs/owner/{owner_address}", response_model=List[ProofRecordOut])
    def list_proofs(owner_address: str):
        return [_public(r) for r in _lifecycle().proofs_for_owner(owner_address)]

    @app.post("/api/proof/{proof_code}/decrypt")
    def decrypt_proof(proof_code: str, req: DecryptRequest):
        lc = _lifecycle()
        plaintext = lc.retrieve(proof_code, Credential.of(req.identity, req.secret_code))
        record = lc.get_proof(proof_code)
        return Response(
            content=plaintext,
            media_type=config.DEFAULT_MEDIA_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{_attachment_name(record.document_name)}"'},
        )

    @app.post("/api/proof/{proof_code}/verify", response_model=VerifyOut)
    def verify_proof(proof_code: str, document: UploadFile = File(...)):
        data = _read_upload(document)
        lc = _lifecycle()
        try:
            record = lc.verify_document(proof_code, data)
        except IntegrityError:
            record = lc.get_proof(proof_code)
            return VerifyOut(proof_code=record.proof_code, match=False, plaintext_hash=record.plaintext_hash)
        return VerifyOut(proof_code=record.proof_code, match=True, plaintext_hash=record.plaintext_hash)

    @app.post("/api/proof/{proof_code}/anchor", response_model=ProofRecordOut)
    def update_anchor(proof_code: str, req: AnchorUpdateRequest):
        return _public(_lifecycle().confirm_anchor(proof_code, req.anchor_tx_id))

    return app

