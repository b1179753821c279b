"""
MedLedger registry service.

Owns the shared ``RegistryDatabase`` and wires the record store,
access ledger and audit log around it. This is the operation surface
used by the HTTP API and the CLI.

Caller identities are taken as already authenticated; the transport
layer is responsible for establishing them.
"""

from typing import Callable, List, Optional, Sequence

from .access import AccessLedger
from .audit import AuditLog, Subscriber
from .db import RegistryDatabase
from .errors import RegistryError
from .logging_config import audit_log
from .models import AuditEvent, Record
from .records import RecordStore
from .signatures import SignatureInput, recover_signer
from .util import now_epoch


class MedicalRecordRegistry:
    """
    Patient-controlled registry of medical record metadata.

    Every mutating operation runs in a single transaction: either all
    of its state changes and audit events are kept, or none are.
    """

    def __init__(
        self,
        db: Optional[RegistryDatabase] = None,
        clock: Callable[[], int] = now_epoch,
    ):
        self.db = db or RegistryDatabase()
        self.audit = AuditLog(self.db, clock)
        self.records = RecordStore(self.db, self.audit, clock)
        self.access = AccessLedger(self.db, self.records, self.audit)
        self.records.access = self.access

    def _run(self, operation: str, fn, *args):
        try:
            return fn(*args)
        except RegistryError as e:
            audit_log.operation_aborted(operation, e.code, str(e))
            raise

    # ------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------

    def create_record(
        self,
        caller: str,
        content_locator: str,
        content_digest: bytes,
        providers: Sequence[str] = (),
        encrypted_keys: Sequence[bytes] = (),
    ) -> int:
        return self._run(
            "create_record", self.records.create_record,
            caller, content_locator, content_digest, providers, encrypted_keys,
        )

    def authorize_provider(self, caller: str, record_id: int, provider: str, encrypted_key: bytes) -> None:
        self._run("authorize_provider", self.access.authorize, caller, record_id, provider, encrypted_key)

    def revoke_provider(self, caller: str, record_id: int, provider: str) -> None:
        self._run("revoke_provider", self.access.revoke, caller, record_id, provider)

    def delete_record(self, caller: str, record_id: int) -> None:
        self._run("delete_record", self.records.delete_record, caller, record_id)

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------

    def get_encrypted_key_for_caller(self, caller: str, record_id: int) -> bytes:
        return self.access.get_encrypted_key_for_caller(caller, record_id)

    def get_record_metadata(self, record_id: int) -> Record:
        return self.records.get_record_metadata(record_id)

    def get_patient_record_ids(self, identity: str) -> List[int]:
        return self.records.get_patient_record_ids(identity)

    @staticmethod
    def recover_signer(message_digest: bytes, signature: SignatureInput) -> str:
        return recover_signer(message_digest, signature)

    # ------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------

    def audit_events(
        self,
        record_id: Optional[int] = None,
        since_seq: int = 0,
        limit: Optional[int] = None,
    ) -> List[AuditEvent]:
        return self.audit.entries(record_id=record_id, since_seq=since_seq, limit=limit)

    def subscribe(self, callback: Subscriber) -> None:
        self.audit.subscribe(callback)

    def verify_audit_chain(self) -> dict:
        return self.audit.verify_chain()
