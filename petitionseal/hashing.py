"""
PetitionSeal hashing.

All digests are SHA-256 with lowercase hexadecimal output. Every function here
is pure: the same inputs always produce the same digest, which is what lets a
stored audit hash be recomputed years later and compared bit-for-bit.
"""

import secrets
from datetime import datetime, timezone
from typing import Any, Mapping

from .util import sha256_hex, constant_time_compare

# Appended to typed signatures before hashing. Changing it invalidates every
# typed-signature hash issued under the previous suffix.
TYPED_SIGNATURE_SUFFIX = "|v1.0"

AUDIT_REQUIRED_FIELDS = (
    "consent",
    "email",
    "firstName",
    "ip",
    "lastName",
    "method",
    "petitionHash",
    "timestamp",
    "userAgent",
)

AUDIT_OPTIONAL_FIELDS = (
    "city",
    "comment",
    "country",
    "signatureImageHash",
    "state",
    "zip",
)

AUDIT_FIELDS = tuple(sorted(AUDIT_REQUIRED_FIELDS + AUDIT_OPTIONAL_FIELDS))

OTP_CODE_MIN = 100000
OTP_CODE_MAX = 999999


def normalize(title: str, body: str, version: str) -> str:
    """
    Normalize petition text for hashing.

    Title and body are trimmed independently and CRLF line endings become LF.
    Case and internal whitespace are left alone.
    """
    normalized_title = title.strip().replace("\r\n", "\n")
    normalized_body = body.strip().replace("\r\n", "\n")
    return f"{normalized_title}|{normalized_body}|{version}"


def petition_hash(title: str, body: str, version: str) -> str:
    """Hash of the normalized petition text."""
    return sha256_hex(normalize(title, body, version))


def image_hash(data: bytes) -> str:
    """Hash of a signature image over its raw bytes."""
    return sha256_hex(bytes(data))


def typed_signature_hash(text: str) -> str:
    """Hash of a typed signature with the versioned suffix."""
    return sha256_hex(text + TYPED_SIGNATURE_SUFFIX)


def _audit_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def audit_canonical(fields: Mapping[str, Any]) -> str:
    """
    Build the canonical audit string.

    Uses the fixed field set only, sorted by key name, joined as ``key:value``
    pairs with ``|``. Keys outside the field set are ignored; absent optional
    fields serialize as the empty string.

    Raises:
        ValueError: If a required field is missing
    """
    missing = [k for k in AUDIT_REQUIRED_FIELDS if fields.get(k) is None]
    if missing:
        raise ValueError(f"missing audit fields: {', '.join(missing)}")
    return "|".join(f"{key}:{_audit_value(fields.get(key))}" for key in AUDIT_FIELDS)


def audit_hash(fields: Mapping[str, Any]) -> str:
    """Hash of the canonical audit string."""
    return sha256_hex(audit_canonical(fields))


def audit_timestamp(dt: datetime) -> str:
    """
    Serialize a datetime for the audit ``timestamp`` field.

    ISO-8601 in UTC with millisecond precision and a ``Z`` suffix,
    e.g. ``2024-05-01T12:00:00.000Z``. Naive datetimes are taken as UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def otp_hash(code: str, email: str, secret: str) -> str:
    """Hash of an OTP code bound to its email and the server secret."""
    return sha256_hex(f"{code}:{email}:{secret}")


def verify_otp_hash(code: str, email: str, stored_hash: str, secret: str) -> bool:
    """Recompute the OTP hash and compare it in constant time."""
    return constant_time_compare(otp_hash(code, email, secret), stored_hash)


def otp_code() -> str:
    """Draw a six digit code from [100000, 999999] using a CSPRNG."""
    return str(OTP_CODE_MIN + secrets.randbelow(OTP_CODE_MAX - OTP_CODE_MIN + 1))
