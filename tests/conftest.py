import hashlib

import pytest

from medledger import MedicalRecordRegistry, RegistryDatabase, identity_from_private_key


class ManualClock:
    """Deterministic clock for registry tests."""

    def __init__(self, now: int = 1_700_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int = 1) -> None:
        self.now += seconds


def private_key(n: int) -> bytes:
    return bytes([n]) * 32


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def registry(clock):
    reg = MedicalRecordRegistry(RegistryDatabase(":memory:"), clock=clock)
    yield reg
    reg.db.close()


@pytest.fixture
def patient():
    return identity_from_private_key(private_key(1))


@pytest.fixture
def other_patient():
    return identity_from_private_key(private_key(2))


@pytest.fixture
def doctor():
    return identity_from_private_key(private_key(3))


@pytest.fixture
def nurse():
    return identity_from_private_key(private_key(4))


@pytest.fixture
def stranger():
    return identity_from_private_key(private_key(5))


@pytest.fixture
def digest():
    return hashlib.sha256(b"encrypted lab report").digest()


@pytest.fixture
def locator():
    return "ipfs://bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"
