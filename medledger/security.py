"""
Security module for MedLedger.

Provides input validation and sanitization for values that cross
into the registry: identities, record ids, digests and key blobs.
"""

import re
from typing import Any, List, Optional

from eth_utils import (
    is_checksum_address,
    is_checksum_formatted_address,
    is_hex_address,
    to_checksum_address,
)

from .errors import ValidationError
from .util import b64d, hex_decode


# ============================================================
# Input Validation
# ============================================================

HEX_PATTERN = re.compile(r'^(0x)?[a-fA-F0-9]*$')
BASE64_PATTERN = re.compile(r'^[A-Za-z0-9+/]*={0,2}$')

DIGEST_SIZE = 32
MAX_LOCATOR_LENGTH = 2048

NULL_IDENTITY = "0x" + "00" * 20


def validate_identity(value: Any, field_name: str = "identity") -> str:
    """
    Validate an account identity and return its checksummed form.

    Accepts lowercase, uppercase or correctly checksummed hex
    addresses. A mixed-case address with a bad checksum is rejected.

    Raises:
        ValidationError: If the value is not a 20-byte hex address
    """
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")

    value = value.strip()
    if not is_hex_address(value):
        raise ValidationError(field_name, "must be a valid account address")

    if is_checksum_formatted_address(value) and not is_checksum_address(value):
        raise ValidationError(field_name, "invalid checksum")

    return to_checksum_address(value)


def validate_identities(values: List[Any], field_name: str) -> List[str]:
    """Validate a list of identities, preserving order."""
    return [
        validate_identity(v, f"{field_name}[{i}]")
        for i, v in enumerate(values)
    ]


def validate_record_id(value: Any, field_name: str = "record_id") -> int:
    """
    Validate that a record id is a positive integer.

    Booleans are rejected even though they are ints in Python.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field_name, "must be an integer")

    if value <= 0:
        raise ValidationError(field_name, "must be positive")

    return value


def validate_digest(value: Any, field_name: str = "content_digest") -> bytes:
    """
    Validate a content digest.

    Accepts raw bytes or a hex string; the result is always
    exactly 32 bytes.
    """
    if isinstance(value, str):
        value = validate_hex(value, field_name)

    if not isinstance(value, (bytes, bytearray)):
        raise ValidationError(field_name, "must be bytes or a hex string")

    if len(value) != DIGEST_SIZE:
        raise ValidationError(field_name, f"must be {DIGEST_SIZE} bytes")

    return bytes(value)


def validate_locator(value: Any, field_name: str = "content_locator") -> str:
    """Validate an off-chain content locator."""
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")

    if len(value) > MAX_LOCATOR_LENGTH:
        raise ValidationError(field_name, f"must not exceed {MAX_LOCATOR_LENGTH} characters")

    return value


def validate_key_blob(value: Any, field_name: str = "encrypted_key") -> bytes:
    """
    Validate an encrypted key blob.

    The contents are opaque; only the type is checked.
    """
    if not isinstance(value, (bytes, bytearray)):
        raise ValidationError(field_name, "must be bytes")
    return bytes(value)


def validate_hex(value: str, field_name: str, expected_length: Optional[int] = None) -> bytes:
    """
    Decode a hex string, with or without 0x prefix.

    Raises:
        ValidationError: If the string is not hex or has the wrong byte length
    """
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")

    value = value.strip()
    if not HEX_PATTERN.match(value):
        raise ValidationError(field_name, "must be valid hexadecimal")

    try:
        raw = hex_decode(value)
    except ValueError:
        raise ValidationError(field_name, "must have an even number of hex digits")

    if expected_length is not None and len(raw) != expected_length:
        raise ValidationError(field_name, f"must be {expected_length} bytes")

    return raw


def validate_base64(value: str, field_name: str) -> bytes:
    """Decode a standard base64 string."""
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")

    value = value.strip()
    if not BASE64_PATTERN.match(value):
        raise ValidationError(field_name, "must be valid base64")

    try:
        return b64d(value)
    except ValueError:
        raise ValidationError(field_name, "must be valid base64")

