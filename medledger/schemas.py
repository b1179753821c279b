from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class CreateRecordRequest(BaseModel):
    content_locator: str
    content_digest: str  # hex, 32 bytes
    providers: List[str] = Field(default_factory=list)
    encrypted_keys: List[str] = Field(default_factory=list)  # base64, parallel to providers


class CreateRecordResponse(BaseModel):
    record_id: int


class AuthorizeProviderRequest(BaseModel):
    encrypted_key: str  # base64


class RecordResponse(BaseModel):
    record_id: int
    content_locator: str
    content_digest: str
    created_at: int
    created_at_rfc3339: str
    creator: str
    active: bool


class EncryptedKeyResponse(BaseModel):
    record_id: int
    authorized: bool
    encrypted_key: str  # base64; empty when not authorized


class PatientRecordsResponse(BaseModel):
    identity: str
    record_ids: List[int]


class RecoverSignerRequest(BaseModel):
    message_digest: str  # hex, 32 bytes
    signature: Optional[str] = None  # hex, 65 bytes r||s||v
    v: Optional[int] = None
    r: Optional[str] = None  # hex
    s: Optional[str] = None  # hex


class RecoverSignerResponse(BaseModel):
    signer: str
    recovered: bool


class AuditEventResponse(BaseModel):
    seq: int
    kind: str
    record_id: int
    patient: Optional[str] = None
    provider: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: int
    payload_hash: str
    prev_entry_hash: Optional[str] = None
    entry_hash: Optional[str] = None
