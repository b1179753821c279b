"""
HTTP surface for MedLedger.

The caller identity is read from a header set by the authenticating
gateway in front of this service; it is trusted as given. Digests
travel as hex, encrypted keys as base64.
"""

from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from . import config
from .audit import verify_rows
from .db import RegistryDatabase
from .errors import ArgumentMismatch, RecordNotFound, RegistryError, Unauthorized, ValidationError
from .logging_config import configure_logging, set_request_id
from .registry import MedicalRecordRegistry
from .schemas import (
    AuditEventResponse,
    AuthorizeProviderRequest,
    CreateRecordRequest,
    CreateRecordResponse,
    EncryptedKeyResponse,
    PatientRecordsResponse,
    RecordResponse,
    RecoverSignerRequest,
    RecoverSignerResponse,
)
from .security import NULL_IDENTITY, validate_base64, validate_digest, validate_hex, validate_identity
from .util import b64e

ERROR_STATUS = {
    ArgumentMismatch: 400,
    Unauthorized: 403,
    RecordNotFound: 404,
    ValidationError: 422,
}


def create_app(registry: Optional[MedicalRecordRegistry] = None) -> FastAPI:
    """
    Build the API around a registry.

    Without an explicit registry one is opened on ``MEDLEDGER_DB_PATH``
    at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(config.LOG_LEVEL, json_format=config.LOG_JSON, log_file=config.LOG_FILE or None)
        if app.state.registry is None:
            app.state.registry = MedicalRecordRegistry(RegistryDatabase(config.DB_PATH))
        yield

    app = FastAPI(
        title="MedLedger",
        lifespan=lifespan,
        docs_url=None if config.is_production() else "/docs",
    )
    app.state.registry = registry

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = set_request_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(RegistryError)
    async def registry_error_handler(request: Request, exc: RegistryError):
        status = ERROR_STATUS.get(type(exc), 400)
        body = {"error": exc.code, "detail": str(exc)}
        if isinstance(exc, ValidationError):
            body["field"] = exc.field
        return JSONResponse(status_code=status, content=body)

    def get_registry(request: Request) -> MedicalRecordRegistry:
        if request.app.state.registry is None:
            request.app.state.registry = MedicalRecordRegistry(RegistryDatabase(config.DB_PATH))
        return request.app.state.registry

    def get_caller(request: Request) -> str:
        raw = request.headers.get(config.CALLER_HEADER)
        if not raw:
            raise HTTPException(401, "MISSING_CALLER_IDENTITY")
        return validate_identity(raw, "caller")

    @app.get("/health")
    def health(reg: MedicalRecordRegistry = Depends(get_registry)):
        return {"status": "ok", "env": config.ENV, "stats": reg.db.stats()}

    @app.post("/records", response_model=CreateRecordResponse, status_code=201)
    def create_record(
        req: CreateRecordRequest,
        caller: str = Depends(get_caller),
        reg: MedicalRecordRegistry = Depends(get_registry),
    ):
        keys = [validate_base64(k, f"encrypted_keys[{i}]") for i, k in enumerate(req.encrypted_keys)]
        record_id = reg.create_record(
            caller, req.content_locator, validate_digest(req.content_digest), req.providers, keys
        )
        return {"record_id": record_id}

    @app.get("/records/{record_id}", response_model=RecordResponse)
    def get_record(record_id: int, reg: MedicalRecordRegistry = Depends(get_registry)):
        return reg.get_record_metadata(record_id).to_dict()

    @app.delete("/records/{record_id}", status_code=204)
    def delete_record(
        record_id: int,
        caller: str = Depends(get_caller),
        reg: MedicalRecordRegistry = Depends(get_registry),
    ):
        reg.delete_record(caller, record_id)

    @app.put("/records/{record_id}/providers/{provider}", status_code=204)
    def authorize_provider(
        record_id: int,
        provider: str,
        req: AuthorizeProviderRequest,
        caller: str = Depends(get_caller),
        reg: MedicalRecordRegistry = Depends(get_registry),
    ):
        key = validate_base64(req.encrypted_key, "encrypted_key")
        reg.authorize_provider(caller, record_id, provider, key)

    @app.delete("/records/{record_id}/providers/{provider}", status_code=204)
    def revoke_provider(
        record_id: int,
        provider: str,
        caller: str = Depends(get_caller),
        reg: MedicalRecordRegistry = Depends(get_registry),
    ):
        reg.revoke_provider(caller, record_id, provider)

    @app.get("/records/{record_id}/key", response_model=EncryptedKeyResponse)
    def get_encrypted_key(
        record_id: int,
        caller: str = Depends(get_caller),
        reg: MedicalRecordRegistry = Depends(get_registry),
    ):
        key = reg.get_encrypted_key_for_caller(caller, record_id)
        return {"record_id": record_id, "authorized": bool(key), "encrypted_key": b64e(key)}

    @app.get("/patients/{identity}/records", response_model=PatientRecordsResponse)
    def get_patient_records(identity: str, reg: MedicalRecordRegistry = Depends(get_registry)):
        identity = validate_identity(identity)
        return {"identity": identity, "record_ids": reg.get_patient_record_ids(identity)}

    @app.post("/signatures/recover", response_model=RecoverSignerResponse)
    def recover(req: RecoverSignerRequest):
        digest = validate_hex(req.message_digest, "message_digest")
        if req.signature is not None:
            signature = validate_hex(req.signature, "signature")
        elif req.v is not None and req.r is not None and req.s is not None:
            signature = (req.v, validate_hex(req.r, "r"), validate_hex(req.s, "s"))
        else:
            raise ValidationError("signature", "provide signature or v, r and s")
        signer = MedicalRecordRegistry.recover_signer(digest, signature)
        return {"signer": signer, "recovered": signer != NULL_IDENTITY}

    @app.get("/audit_log", response_model=List[AuditEventResponse])
    def audit_log(
        record_id: Optional[int] = None,
        since_seq: int = 0,
        limit: int = config.AUDIT_PAGE_LIMIT,
        reg: MedicalRecordRegistry = Depends(get_registry),
    ):
        limit = max(1, min(limit, config.AUDIT_PAGE_LIMIT))
        return [e.to_dict() for e in reg.audit_events(record_id=record_id, since_seq=since_seq, limit=limit)]

    @app.get("/audit_log/verify")
    def audit_log_verify(reg: MedicalRecordRegistry = Depends(get_registry)):
        rows = reg.audit.export_rows()
        result = verify_rows(rows)
        result["head_entry_hash"] = rows[-1]["entry_hash"] if rows else None
        return result

    return app


app = create_app()
