"""
MedLedger

A patient-controlled registry of medical record metadata.

Each record holds an off-chain content locator, an integrity digest and,
per authorized provider, an encrypted symmetric key. Only the patient who
created a record may grant, revoke or delete it; a provider can read back
only the key addressed to it. Every change is appended to a hash-chained
audit log that survives soft deletion.

Usage:
    from medledger import MedicalRecordRegistry, RegistryDatabase

    registry = MedicalRecordRegistry(RegistryDatabase("data/medledger.db"))

    record_id = registry.create_record(
        patient,
        "ipfs://bafy...",
        content_digest,
        providers=[doctor],
        encrypted_keys=[key_for_doctor],
    )

    key = registry.get_encrypted_key_for_caller(doctor, record_id)
    registry.revoke_provider(patient, record_id, doctor)
"""

__version__ = "1.0.0"

from .errors import (
    RegistryError,
    ArgumentMismatch,
    RecordNotFound,
    Unauthorized,
    ValidationError,
)
from .models import Record, AuditEvent, EventKind
from .db import RegistryDatabase
from .audit import AuditLog, verify_rows
from .records import RecordStore
from .access import AccessLedger
from .signatures import (
    recover_signer,
    sign_digest,
    generate_private_key,
    identity_from_private_key,
)
from .security import NULL_IDENTITY
from .registry import MedicalRecordRegistry


__all__ = [
    "__version__",

    # Errors
    "RegistryError",
    "ArgumentMismatch",
    "RecordNotFound",
    "Unauthorized",
    "ValidationError",

    # Models
    "Record",
    "AuditEvent",
    "EventKind",

    # Components
    "RegistryDatabase",
    "AuditLog",
    "verify_rows",
    "RecordStore",
    "AccessLedger",
    "MedicalRecordRegistry",

    # Signatures
    "recover_signer",
    "sign_digest",
    "generate_private_key",
    "identity_from_private_key",
    "NULL_IDENTITY",
]
