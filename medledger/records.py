"""
Record store for MedLedger.

Owns Record rows and the per-owner index. Records are never removed:
deletion only clears the ``active`` flag, and the owner index keeps
every id a creator ever registered.
"""

from typing import Callable, List, Optional, Sequence, TYPE_CHECKING

from .audit import AuditLog
from .db import RegistryDatabase
from .errors import ArgumentMismatch, RecordNotFound, Unauthorized
from .logging_config import audit_log
from .models import EventKind, Record
from .security import (
    validate_digest,
    validate_identities,
    validate_identity,
    validate_key_blob,
    validate_locator,
    validate_record_id,
)
from .util import now_epoch

if TYPE_CHECKING:
    from .access import AccessLedger

RECORD_COUNTER = "record_id"


class RecordStore:
    """Creation, soft-deletion and lookup of records."""

    def __init__(
        self,
        db: RegistryDatabase,
        audit: AuditLog,
        clock: Callable[[], int] = now_epoch,
    ):
        self._db = db
        self._audit = audit
        self._clock = clock
        self.access: Optional["AccessLedger"] = None

    def create_record(
        self,
        caller: str,
        content_locator: str,
        content_digest: bytes,
        providers: Sequence[str] = (),
        encrypted_keys: Sequence[bytes] = (),
    ) -> int:
        """
        Register a new record owned by ``caller``.

        Each (provider, key) pair is granted in input order, emitting
        KeyUpdated then ProviderAuthorized per pair, and RecordCreated is
        emitted last. Nothing is stored if any step fails.

        Raises:
            ArgumentMismatch: providers and encrypted_keys differ in length
            ValidationError: malformed identity, digest or key
        """
        if len(providers) != len(encrypted_keys):
            raise ArgumentMismatch(len(providers), len(encrypted_keys))

        caller = validate_identity(caller, "caller")
        content_locator = validate_locator(content_locator)
        content_digest = validate_digest(content_digest)
        providers = validate_identities(list(providers), "providers")
        encrypted_keys = [
            validate_key_blob(k, f"encrypted_keys[{i}]") for i, k in enumerate(encrypted_keys)
        ]
        if providers and self.access is None:
            raise RuntimeError("RecordStore has no AccessLedger attached")

        with self._db.transaction() as conn:
            record_id = self._db.next_value(RECORD_COUNTER)
            created_at = self._clock()

            conn.execute(
                "INSERT INTO records(record_id, content_locator, content_digest, created_at, creator, active) "
                "VALUES(?,?,?,?,?,1)",
                (record_id, content_locator, content_digest, created_at, caller)
            )
            position = conn.execute(
                "SELECT COUNT(*) AS cnt FROM owner_index WHERE owner=?", (caller,)
            ).fetchone()["cnt"]
            conn.execute(
                "INSERT INTO owner_index(owner, position, record_id) VALUES(?,?,?)",
                (caller, position, record_id)
            )

            for provider, key in zip(providers, encrypted_keys):
                self.access.authorize(caller, record_id, provider, key)

            self._audit.append(
                EventKind.RECORD_CREATED,
                record_id,
                patient=caller,
                payload={"content_locator": content_locator},
                timestamp=created_at,
            )

        audit_log.record_created(record_id, caller, len(providers))
        return record_id

    def get_record_metadata(self, record_id: int) -> Record:
        """
        Look up a record, active or not.

        Raises:
            RecordNotFound: the id was never created
        """
        record_id = validate_record_id(record_id)
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT record_id, content_locator, content_digest, created_at, creator, active "
                "FROM records WHERE record_id=?",
                (record_id,)
            ).fetchone()
        if row is None:
            raise RecordNotFound(record_id)
        return Record(
            record_id=row["record_id"],
            content_locator=row["content_locator"],
            content_digest=bytes(row["content_digest"]),
            created_at=row["created_at"],
            creator=row["creator"],
            active=bool(row["active"]),
        )

    def require_owner(self, caller: str, record_id: int, operation: str) -> Record:
        """
        Load a record and check that ``caller`` created it.

        Existence is checked first, so an unknown id is always
        RecordNotFound regardless of caller.
        """
        record = self.get_record_metadata(record_id)
        if record.creator != caller:
            audit_log.access_denied(record.record_id, caller, operation)
            raise Unauthorized(record.record_id, caller)
        return record

    def delete_record(self, caller: str, record_id: int) -> None:
        """
        Soft-delete a record.

        Deleting an already inactive record emits RecordDeleted again.
        """
        caller = validate_identity(caller, "caller")
        with self._db.transaction() as conn:
            record = self.require_owner(caller, record_id, "delete_record")
            conn.execute("UPDATE records SET active=0 WHERE record_id=?", (record.record_id,))
            self._audit.append(EventKind.RECORD_DELETED, record.record_id, patient=caller)

        audit_log.record_deleted(record.record_id, already_inactive=not record.active)

    def get_patient_record_ids(self, identity: str) -> List[int]:
        """Ids created by ``identity``, in creation order."""
        identity = validate_identity(identity)
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT record_id FROM owner_index WHERE owner=? ORDER BY position ASC",
                (identity,)
            ).fetchall()
        return [row["record_id"] for row in rows]
