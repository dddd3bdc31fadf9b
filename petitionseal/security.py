"""
Security module for PetitionSeal.

Provides input validation, signature payload decoding, and request helpers.
"""

import base64
import binascii
import re
from typing import Any, Dict, List, Mapping, Optional

from .errors import InputError, InvalidSignatureError


# ============================================================
# Input Validation
# ============================================================

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
OTP_CODE_PATTERN = re.compile(r'^\d{6}$')
AUDIT_HASH_PATTERN = re.compile(r'^[a-f0-9]{64}$')
BASE64_PATTERN = re.compile(r'^[A-Za-z0-9+/]*={0,2}$')
DATA_URL_PREFIX = re.compile(r'^data:image/png;base64,')

PNG_MAGIC = b'\x89PNG\r\n\x1a\n'
MAX_EMAIL_LENGTH = 254


def normalize_email(value: Any) -> str:
    """
    Validate and normalize an email address.

    Surrounding whitespace is stripped and the address lower-cased, so the
    same mailbox always hashes and compares the same way.

    Raises:
        InputError: If the value is not a plausible email address
    """
    if not isinstance(value, str):
        raise InputError("must be a string", field="email")
    value = value.strip().lower()
    if not value or len(value) > MAX_EMAIL_LENGTH or not EMAIL_PATTERN.match(value):
        raise InputError("Invalid email address", field="email")
    return value


def validate_otp_code(value: Any) -> str:
    """Validate a six digit verification code."""
    if not isinstance(value, str) or not OTP_CODE_PATTERN.match(value):
        raise InputError("Code must be 6 digits", field="code")
    return value


def is_audit_hash(value: Any) -> bool:
    """True when ``value`` looks like an audit hash (64 lowercase hex chars)."""
    return isinstance(value, str) and bool(AUDIT_HASH_PATTERN.match(value))


# ============================================================
# Signature payloads
# ============================================================

def decode_signature_image(payload: str, max_bytes: int) -> bytes:
    """
    Decode a drawn signature sent as a PNG data URL or bare base64.

    Args:
        payload: ``data:image/png;base64,...`` or plain base64 text
        max_bytes: Largest decoded image accepted

    Returns:
        The raw PNG bytes

    Raises:
        InvalidSignatureError: If the payload is not decodable, empty, too
            large, or not a PNG image
    """
    if not isinstance(payload, str):
        raise InvalidSignatureError(field="signatureImageBase64")

    data = DATA_URL_PREFIX.sub('', payload.strip())
    data = re.sub(r'\s+', '', data)

    # Encoded length bounds the decoded size; reject before decoding.
    if len(data) > (max_bytes * 4) // 3 + 4:
        raise InvalidSignatureError("Signature image is too large", field="signatureImageBase64")

    if not data or not BASE64_PATTERN.match(data):
        raise InvalidSignatureError("Invalid signature image data", field="signatureImageBase64")

    try:
        image = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidSignatureError("Invalid signature image data", field="signatureImageBase64")

    if not image:
        raise InvalidSignatureError("Invalid signature image data", field="signatureImageBase64")
    if len(image) > max_bytes:
        raise InvalidSignatureError("Signature image is too large", field="signatureImageBase64")
    if not image.startswith(PNG_MAGIC):
        raise InvalidSignatureError("Signature image must be a PNG", field="signatureImageBase64")

    return image


# ============================================================
# Request helpers
# ============================================================

def extract_client_ip(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    """
    Extract the client address for rate limiting and the audit record.

    Uses the first hop of ``X-Forwarded-For``, then ``X-Real-IP``, then the
    socket peer.
    """
    forwarded = headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(',')[0].strip()
        if first:
            return first

    real_ip = headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip

    return peer or "127.0.0.1"


def sanitize_for_logging(data: Dict[str, Any], sensitive_fields: List[str] = None) -> Dict[str, Any]:
    """
    Sanitize data for logging by masking sensitive fields.

    Args:
        data: The data to sanitize
        sensitive_fields: List of field names to mask

    Returns:
        Sanitized copy of the data
    """
    if sensitive_fields is None:
        sensitive_fields = ["code", "token", "secret", "signatureImageBase64", "typedSignature"]

    result = {}
    for key, value in data.items():
        if key in sensitive_fields:
            result[key] = "[REDACTED]"
        elif isinstance(value, dict):
            result[key] = sanitize_for_logging(value, sensitive_fields)
        elif isinstance(value, list):
            result[key] = [
                sanitize_for_logging(item, sensitive_fields) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value

    return result
