"""
Access ledger for MedLedger.

Holds one encrypted symmetric key per (record, provider). A row
exists exactly while the provider is authorized. Keys are opaque:
they are stored and handed back, never inspected.
"""

from .audit import AuditLog
from .db import RegistryDatabase
from .logging_config import audit_log
from .models import EventKind
from .records import RecordStore
from .security import validate_identity, validate_key_blob


class AccessLedger:
    """Grant, revoke and self-service lookup of provider keys."""

    def __init__(self, db: RegistryDatabase, records: RecordStore, audit: AuditLog):
        self._db = db
        self._records = records
        self._audit = audit

    def authorize(self, caller: str, record_id: int, provider: str, encrypted_key: bytes) -> None:
        """
        Publish ``encrypted_key`` for ``provider`` on a record.

        Overwrites any earlier key. Emits KeyUpdated then
        ProviderAuthorized on every call.

        Raises:
            RecordNotFound: the record was never created
            Unauthorized: caller is not the record's creator
        """
        caller = validate_identity(caller, "caller")
        provider = validate_identity(provider, "provider")
        encrypted_key = validate_key_blob(encrypted_key)

        with self._db.transaction() as conn:
            record = self._records.require_owner(caller, record_id, "authorize_provider")
            conn.execute(
                "INSERT INTO provider_keys(record_id, provider, encrypted_key) VALUES(?,?,?) "
                "ON CONFLICT(record_id, provider) DO UPDATE SET encrypted_key=excluded.encrypted_key",
                (record.record_id, provider, encrypted_key)
            )
            self._audit.append(EventKind.KEY_UPDATED, record.record_id, provider=provider)
            self._audit.append(
                EventKind.PROVIDER_AUTHORIZED, record.record_id, patient=caller, provider=provider
            )

        audit_log.provider_authorized(record.record_id, provider)

    def revoke(self, caller: str, record_id: int, provider: str) -> None:
        """
        Remove ``provider``'s key from a record.

        Revoking a provider that holds no key is not an error; the
        ProviderRevoked event is emitted either way.
        """
        caller = validate_identity(caller, "caller")
        provider = validate_identity(provider, "provider")

        with self._db.transaction() as conn:
            record = self._records.require_owner(caller, record_id, "revoke_provider")
            cur = conn.execute(
                "DELETE FROM provider_keys WHERE record_id=? AND provider=?",
                (record.record_id, provider)
            )
            self._audit.append(
                EventKind.PROVIDER_REVOKED, record.record_id, patient=caller, provider=provider
            )

        audit_log.provider_revoked(record.record_id, provider, was_authorized=cur.rowcount == 1)

    def get_encrypted_key_for_caller(self, caller: str, record_id: int) -> bytes:
        """
        Return the key published for ``caller``, or ``b""``.

        There is deliberately no way to read another identity's key.

        Raises:
            RecordNotFound: the record was never created
        """
        caller = validate_identity(caller, "caller")
        record = self._records.get_record_metadata(record_id)
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT encrypted_key FROM provider_keys WHERE record_id=? AND provider=?",
                (record.record_id, caller)
            ).fetchone()

        key = bytes(row["encrypted_key"]) if row else b""
        audit_log.key_lookup(record.record_id, caller, found=row is not None)
        return key
