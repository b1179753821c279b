"""
Record store tests: creation, metadata lookup, soft deletion and the
per-patient index.
"""

import hashlib

import pytest

from medledger import ArgumentMismatch, RecordNotFound, Unauthorized, ValidationError


def test_ids_start_at_one_and_increase(registry, patient, other_patient, digest, locator):
    ids = [
        registry.create_record(patient, locator, digest),
        registry.create_record(other_patient, locator, digest),
        registry.create_record(patient, locator, digest),
    ]
    assert ids == [1, 2, 3]


def test_metadata_matches_creation(registry, clock, patient, digest, locator):
    rid = registry.create_record(patient, locator, digest)
    record = registry.get_record_metadata(rid)
    assert record.record_id == rid
    assert record.content_locator == locator
    assert record.content_digest == digest
    assert record.created_at == clock.now
    assert record.creator == patient
    assert record.active is True


def test_creator_is_normalized_to_checksum(registry, patient, digest, locator):
    rid = registry.create_record(patient.lower(), locator, digest)
    assert registry.get_record_metadata(rid).creator == patient
    assert registry.get_patient_record_ids(patient.lower()) == [rid]


def test_hex_digest_is_accepted(registry, patient, digest, locator):
    rid = registry.create_record(patient, locator, "0x" + digest.hex())
    assert registry.get_record_metadata(rid).content_digest == digest


def test_digest_must_be_32_bytes(registry, patient, locator):
    with pytest.raises(ValidationError) as exc:
        registry.create_record(patient, locator, b"\x00" * 31)
    assert exc.value.field == "content_digest"


def test_mismatched_lists_do_not_mutate(registry, patient, doctor, digest, locator):
    with pytest.raises(ArgumentMismatch):
        registry.create_record(patient, locator, digest, [doctor], [])

    assert registry.get_patient_record_ids(patient) == []
    assert registry.audit_events() == []
    with pytest.raises(RecordNotFound):
        registry.get_record_metadata(1)
    # The failed call consumed no id.
    assert registry.create_record(patient, locator, digest) == 1


def test_failure_midway_rolls_back_everything(registry, patient, doctor, nurse, digest, locator, monkeypatch):
    real_authorize = registry.access.authorize
    calls = []

    def flaky_authorize(caller, record_id, provider, key):
        calls.append(provider)
        if len(calls) == 2:
            raise RuntimeError("storage failure")
        return real_authorize(caller, record_id, provider, key)

    monkeypatch.setattr(registry.access, "authorize", flaky_authorize)
    with pytest.raises(RuntimeError):
        registry.create_record(patient, locator, digest, [doctor, nurse], [b"k1", b"k2"])

    assert calls == [doctor, nurse]
    assert registry.get_patient_record_ids(patient) == []
    assert registry.audit_events() == []
    assert registry.db.stats()["provider_keys_count"] == 0

    monkeypatch.undo()
    rid = registry.create_record(patient, locator, digest, [doctor], [b"k1"])
    assert rid == 1
    assert registry.get_encrypted_key_for_caller(doctor, rid) == b"k1"


def test_unknown_record_is_not_found(registry):
    with pytest.raises(RecordNotFound) as exc:
        registry.get_record_metadata(42)
    assert exc.value.record_id == 42


def test_record_id_must_be_positive(registry):
    with pytest.raises(ValidationError):
        registry.get_record_metadata(0)


class TestDeleteRecord:

    def test_soft_delete_keeps_metadata_and_index(self, registry, clock, patient, digest, locator):
        rid = registry.create_record(patient, locator, digest)
        created_at = clock.now
        clock.advance(60)

        registry.delete_record(patient, rid)

        record = registry.get_record_metadata(rid)
        assert record.active is False
        assert record.content_locator == locator
        assert record.content_digest == digest
        assert record.created_at == created_at
        assert record.creator == patient
        assert registry.get_patient_record_ids(patient) == [rid]

    def test_only_creator_may_delete(self, registry, patient, stranger, digest, locator):
        rid = registry.create_record(patient, locator, digest)
        events_before = len(registry.audit_events())

        with pytest.raises(Unauthorized) as exc:
            registry.delete_record(stranger, rid)

        assert exc.value.caller == stranger
        assert registry.get_record_metadata(rid).active is True
        assert len(registry.audit_events()) == events_before

    def test_delete_unknown_record(self, registry, patient):
        with pytest.raises(RecordNotFound):
            registry.delete_record(patient, 7)

    def test_repeat_delete_emits_again(self, registry, patient, digest, locator):
        rid = registry.create_record(patient, locator, digest)
        registry.delete_record(patient, rid)
        registry.delete_record(patient, rid)

        kinds = [e.kind.value for e in registry.audit_events(record_id=rid)]
        assert kinds == ["RecordCreated", "RecordDeleted", "RecordDeleted"]
        assert registry.get_record_metadata(rid).active is False


class TestPatientIndex:

    def test_empty_for_unknown_identity(self, registry, stranger):
        assert registry.get_patient_record_ids(stranger) == []

    def test_creation_order_per_patient(self, registry, patient, other_patient, locator):
        mine, theirs = [], []
        for i in range(5):
            d = hashlib.sha256(str(i).encode()).digest()
            mine.append(registry.create_record(patient, locator, d))
            theirs.append(registry.create_record(other_patient, locator, d))

        assert registry.get_patient_record_ids(patient) == mine
        assert registry.get_patient_record_ids(other_patient) == theirs

    def test_includes_deleted_records(self, registry, patient, digest, locator):
        first = registry.create_record(patient, locator, digest)
        second = registry.create_record(patient, locator, digest)
        registry.delete_record(patient, first)
        assert registry.get_patient_record_ids(patient) == [first, second]

    def test_invalid_identity(self, registry):
        with pytest.raises(ValidationError):
            registry.get_patient_record_ids("not-an-address")
