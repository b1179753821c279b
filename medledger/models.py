"""
MedLedger domain types.

Records and audit events are frozen snapshots: the database is the
only place state changes, and callers only ever see copies.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .util import canonicalize, hex_encode, sha256_hex, utc_rfc3339


class EventKind(str, Enum):
    """Kinds of audit events emitted by the registry."""
    RECORD_CREATED = "RecordCreated"
    PROVIDER_AUTHORIZED = "ProviderAuthorized"
    PROVIDER_REVOKED = "ProviderRevoked"
    RECORD_DELETED = "RecordDeleted"
    KEY_UPDATED = "KeyUpdated"


@dataclass(frozen=True)
class Record:
    """
    Metadata for one off-chain medical document.

    The content itself lives in an external content-addressed
    store; only its locator and digest are held here.
    """
    record_id: int
    content_locator: str
    content_digest: bytes
    created_at: int
    creator: str
    active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "content_locator": self.content_locator,
            "content_digest": hex_encode(self.content_digest),
            "created_at": self.created_at,
            "created_at_rfc3339": utc_rfc3339(self.created_at),
            "creator": self.creator,
            "active": self.active,
        }


@dataclass(frozen=True)
class AuditEvent:
    """
    One entry of the append-only audit log.

    ``seq`` and the chain hashes are assigned when the event is
    persisted; an event built in memory has ``seq == 0``.
    """
    kind: EventKind
    record_id: int
    timestamp: int
    patient: Optional[str] = None
    provider: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    seq: int = 0
    prev_entry_hash: Optional[str] = None
    entry_hash: Optional[str] = None

    def body(self) -> Dict[str, Any]:
        """The hashed portion of the event."""
        return {
            "kind": self.kind.value,
            "record_id": self.record_id,
            "patient": self.patient,
            "provider": self.provider,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }

    def payload_hash(self) -> str:
        return sha256_hex(canonicalize(self.body()))

    def to_dict(self) -> Dict[str, Any]:
        d = {"seq": self.seq, **self.body()}
        d["payload_hash"] = self.payload_hash()
        d["prev_entry_hash"] = self.prev_entry_hash
        d["entry_hash"] = self.entry_hash
        return d
