"""
MedLedger signer recovery.

secp256k1 ECDSA public-key recovery for off-chain signed consent.
``recover_signer`` is a primitive, not an authentication decision:
callers must compare the recovered identity with the one they expect.
It is not wired into any registry access check.
"""

import secrets
from typing import Any, Tuple, Union

from eth_keys import keys
from eth_keys.exceptions import BadSignature
from eth_keys.exceptions import ValidationError as KeyValidationError

from .security import NULL_IDENTITY

DIGEST_SIZE = 32
SIGNATURE_SIZE = 65

SignatureInput = Union[bytes, Tuple[int, Any, Any]]


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("boolean is not a signature component")
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise ValueError("signature component must be 32 bytes")
        return int.from_bytes(value, "big")
    if isinstance(value, int):
        return value
    raise TypeError(f"unsupported signature component: {type(value).__name__}")


def _normalize_v(v: int) -> int:
    # Accept both raw recovery ids and the 27/28 convention.
    if v in (27, 28):
        return v - 27
    return v


def _parse_signature(signature: SignatureInput) -> keys.Signature:
    if isinstance(signature, (bytes, bytearray)):
        if len(signature) != SIGNATURE_SIZE:
            raise ValueError(f"signature must be {SIGNATURE_SIZE} bytes")
        r = int.from_bytes(signature[0:32], "big")
        s = int.from_bytes(signature[32:64], "big")
        v = signature[64]
    else:
        v, r, s = signature
        v, r, s = _to_int(v), _to_int(r), _to_int(s)
    return keys.Signature(vrs=(_normalize_v(v), r, s))


def recover_signer(message_digest: bytes, signature: SignatureInput) -> str:
    """
    Recover the identity that signed ``message_digest``.

    Args:
        message_digest: 32-byte digest that was signed
        signature: 65-byte ``r || s || v`` blob or a ``(v, r, s)`` triple;
            ``v`` may be 0/1 or 27/28, ``r`` and ``s`` ints or 32-byte values

    Returns:
        Checksummed address of the signer, or the null identity if the
        input is malformed or no public key can be recovered
    """
    if not isinstance(message_digest, (bytes, bytearray)) or len(message_digest) != DIGEST_SIZE:
        return NULL_IDENTITY

    try:
        sig = _parse_signature(signature)
        public_key = sig.recover_public_key_from_msg_hash(bytes(message_digest))
    except (BadSignature, KeyValidationError, ValueError, TypeError):
        return NULL_IDENTITY

    return public_key.to_checksum_address()


# Convenience functions for off-chain clients and tests

def generate_private_key() -> keys.PrivateKey:
    """Generate a random secp256k1 private key."""
    return keys.PrivateKey(secrets.token_bytes(32))


def identity_from_private_key(private_key: Union[bytes, keys.PrivateKey]) -> str:
    """Checksummed identity for a private key."""
    if not isinstance(private_key, keys.PrivateKey):
        private_key = keys.PrivateKey(private_key)
    return private_key.public_key.to_checksum_address()


def sign_digest(private_key: Union[bytes, keys.PrivateKey], message_digest: bytes) -> Tuple[int, int, int]:
    """
    Sign a 32-byte digest.

    Returns:
        (v, r, s) with ``v`` in the 27/28 convention
    """
    if not isinstance(private_key, keys.PrivateKey):
        private_key = keys.PrivateKey(private_key)
    sig = private_key.sign_msg_hash(message_digest)
    return sig.v + 27, sig.r, sig.s
