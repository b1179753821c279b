"""
HTTP surface tests.
"""

import base64

import pytest
from eth_keys import keys
from fastapi.testclient import TestClient

from medledger.api import create_app
from medledger.signatures import sign_digest

CALLER = "X-Caller-Identity"


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def client(registry):
    return TestClient(create_app(registry))


def as_caller(identity):
    return {CALLER: identity}


def create(client, patient, digest, locator, providers=(), keys_=()):
    return client.post(
        "/records",
        json={
            "content_locator": locator,
            "content_digest": digest.hex(),
            "providers": list(providers),
            "encrypted_keys": [b64(k) for k in keys_],
        },
        headers=as_caller(patient),
    )


def test_create_and_read_metadata(client, clock, patient, doctor, digest, locator):
    r = create(client, patient, digest, locator, [doctor], [b"k-doctor"])
    assert r.status_code == 201
    rid = r.json()["record_id"]
    assert rid == 1

    meta = client.get(f"/records/{rid}").json()
    assert meta["content_locator"] == locator
    assert meta["content_digest"] == "0x" + digest.hex()
    assert meta["creator"] == patient
    assert meta["created_at"] == clock.now
    assert meta["active"] is True


def test_key_lookup_is_per_caller(client, patient, doctor, stranger, digest, locator):
    rid = create(client, patient, digest, locator, [doctor], [b"k-doctor"]).json()["record_id"]

    mine = client.get(f"/records/{rid}/key", headers=as_caller(doctor)).json()
    assert mine == {"record_id": rid, "authorized": True, "encrypted_key": b64(b"k-doctor")}

    theirs = client.get(f"/records/{rid}/key", headers=as_caller(stranger)).json()
    assert theirs == {"record_id": rid, "authorized": False, "encrypted_key": ""}


def test_authorize_and_revoke(client, patient, nurse, digest, locator):
    rid = create(client, patient, digest, locator).json()["record_id"]

    r = client.put(
        f"/records/{rid}/providers/{nurse}",
        json={"encrypted_key": b64(b"k-nurse")},
        headers=as_caller(patient),
    )
    assert r.status_code == 204
    assert client.get(f"/records/{rid}/key", headers=as_caller(nurse)).json()["authorized"] is True

    r = client.delete(f"/records/{rid}/providers/{nurse}", headers=as_caller(patient))
    assert r.status_code == 204
    assert client.get(f"/records/{rid}/key", headers=as_caller(nurse)).json()["authorized"] is False


def test_delete_and_patient_index(client, patient, digest, locator):
    rid = create(client, patient, digest, locator).json()["record_id"]
    assert client.delete(f"/records/{rid}", headers=as_caller(patient)).status_code == 204

    assert client.get(f"/records/{rid}").json()["active"] is False
    r = client.get(f"/patients/{patient}/records").json()
    assert r == {"identity": patient, "record_ids": [rid]}


class TestErrorMapping:

    def test_missing_caller_header(self, client, digest, locator):
        r = client.post("/records", json={"content_locator": locator, "content_digest": digest.hex()})
        assert r.status_code == 401

    def test_invalid_caller_header(self, client, digest, locator):
        r = create(client, "0x1234", digest, locator)
        assert r.status_code == 422
        assert r.json()["field"] == "caller"

    def test_argument_mismatch(self, client, patient, doctor, digest, locator):
        r = client.post(
            "/records",
            json={"content_locator": locator, "content_digest": digest.hex(), "providers": [doctor]},
            headers=as_caller(patient),
        )
        assert r.status_code == 400
        assert r.json()["error"] == "ARGUMENT_MISMATCH"

    def test_not_found(self, client, patient, doctor):
        assert client.get("/records/5").status_code == 404
        r = client.get("/records/5/key", headers=as_caller(doctor))
        assert r.status_code == 404
        assert r.json()["error"] == "RECORD_NOT_FOUND"

    def test_unauthorized(self, client, patient, stranger, digest, locator):
        rid = create(client, patient, digest, locator).json()["record_id"]
        r = client.delete(f"/records/{rid}", headers=as_caller(stranger))
        assert r.status_code == 403
        assert r.json()["error"] == "UNAUTHORIZED"

    def test_bad_digest(self, client, patient, locator):
        r = client.post(
            "/records",
            json={"content_locator": locator, "content_digest": "abcd"},
            headers=as_caller(patient),
        )
        assert r.status_code == 422
        assert r.json()["field"] == "content_digest"

    def test_bad_base64_key(self, client, patient, doctor, digest, locator):
        rid = create(client, patient, digest, locator).json()["record_id"]
        r = client.put(
            f"/records/{rid}/providers/{doctor}",
            json={"encrypted_key": "not base64!"},
            headers=as_caller(patient),
        )
        assert r.status_code == 422


def test_recover_signer_endpoint(client, digest):
    private_key = keys.PrivateKey(bytes([9]) * 32)
    v, r, s = sign_digest(private_key, digest)

    resp = client.post("/signatures/recover", json={
        "message_digest": digest.hex(),
        "v": v,
        "r": r.to_bytes(32, "big").hex(),
        "s": s.to_bytes(32, "big").hex(),
    }).json()
    assert resp == {"signer": private_key.public_key.to_checksum_address(), "recovered": True}

    blob = private_key.sign_msg_hash(digest).to_bytes()
    resp = client.post("/signatures/recover", json={
        "message_digest": digest.hex(),
        "signature": "0x" + blob.hex(),
    }).json()
    assert resp["recovered"] is True


def test_recover_signer_malformed(client, digest):
    resp = client.post("/signatures/recover", json={
        "message_digest": digest.hex(),
        "signature": "00" * 65,
    })
    assert resp.status_code == 200
    assert resp.json() == {"signer": "0x" + "00" * 20, "recovered": False}

    resp = client.post("/signatures/recover", json={"message_digest": digest.hex()})
    assert resp.status_code == 422


def test_audit_log_export_and_verify(client, patient, doctor, digest, locator):
    rid = create(client, patient, digest, locator, [doctor], [b"k"]).json()["record_id"]
    client.delete(f"/records/{rid}", headers=as_caller(patient))

    log = client.get("/audit_log").json()
    assert [e["kind"] for e in log] == ["KeyUpdated", "ProviderAuthorized", "RecordCreated", "RecordDeleted"]

    filtered = client.get("/audit_log", params={"since_seq": 3}).json()
    assert [e["seq"] for e in filtered] == [4]

    proof = client.get("/audit_log/verify").json()
    assert proof["valid"] is True
    assert proof["entries"] == 4
    assert proof["head_entry_hash"] == log[-1]["entry_hash"]


def test_audit_verify_reports_head_of_verified_rows(client, registry, monkeypatch, patient, digest, locator):
    create(client, patient, digest, locator)
    head = client.get("/audit_log").json()[-1]["entry_hash"]

    export_rows = registry.audit.export_rows

    def export_then_write():
        rows = export_rows()
        # A write landing right after the read must not leak into the response.
        registry.create_record(patient, locator, digest)
        return rows

    monkeypatch.setattr(registry.audit, "export_rows", export_then_write)
    proof = client.get("/audit_log/verify").json()
    assert proof["valid"] is True
    assert proof["entries"] == 1
    assert proof["head_entry_hash"] == head


def test_health(client, patient, digest, locator):
    create(client, patient, digest, locator)
    r = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert r.status_code == 200
    assert r.headers["X-Request-ID"] == "req-123"
    assert r.json()["stats"]["records_count"] == 1
