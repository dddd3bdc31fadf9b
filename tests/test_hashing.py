import hashlib
from datetime import datetime, timedelta, timezone

import pytest

from petitionseal.hashing import (
    AUDIT_FIELDS,
    audit_canonical,
    audit_hash,
    audit_timestamp,
    image_hash,
    normalize,
    otp_code,
    otp_hash,
    petition_hash,
    typed_signature_hash,
    verify_otp_hash,
)

SECRET = "test-session-secret-0123456789abcdef"


def sha(s):
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def audit_fields(**overrides):
    fields = {
        "consent": True,
        "email": "a@b.co",
        "firstName": "Ann",
        "ip": "1.2.3.4",
        "lastName": "Lee",
        "method": "typed",
        "petitionHash": "p",
        "signatureImageHash": "s",
        "timestamp": "2024-05-01T12:00:00.000Z",
        "userAgent": "UA",
    }
    fields.update(overrides)
    return fields


def test_normalize_trims_and_converts_crlf():
    assert normalize("  A  ", "B\r\nC  ", "v1") == "A|B\nC|v1"
    assert normalize("  A  ", "B\r\nC\r\n  ", "v1") == "A|B\nC|v1"


def test_normalize_keeps_case_and_inner_whitespace():
    assert normalize("Save  The Park", "Line one\n\n  Line two", "v2") == "Save  The Park|Line one\n\n  Line two|v2"


def test_petition_hash_is_sha256_of_normalized_text():
    assert petition_hash(" A ", "B\r\nC", "v1") == sha("A|B\nC|v1")
    assert petition_hash("A", "B\nC", "v1") == petition_hash("A", "B\r\nC", "v1")


def test_petition_hash_changes_with_version():
    assert petition_hash("A", "B", "v1.0") != petition_hash("A", "B", "v1.1")


def test_image_hash_over_raw_bytes():
    data = b"\x89PNG\r\n\x1a\nabc"
    assert image_hash(data) == hashlib.sha256(data).hexdigest()


def test_typed_signature_hash_has_version_suffix():
    assert typed_signature_hash("Jane Doe") == sha("Jane Doe|v1.0")
    assert typed_signature_hash("Jane Doe") != sha("Jane Doe")


def test_audit_fields_are_sorted():
    assert list(AUDIT_FIELDS) == sorted(AUDIT_FIELDS)
    assert len(AUDIT_FIELDS) == 15


def test_audit_canonical_exact_string():
    assert audit_canonical(audit_fields()) == (
        "city:|comment:|consent:true|country:|email:a@b.co|firstName:Ann|ip:1.2.3.4|"
        "lastName:Lee|method:typed|petitionHash:p|signatureImageHash:s|state:|"
        "timestamp:2024-05-01T12:00:00.000Z|userAgent:UA|zip:"
    )


def test_audit_hash_is_sha256_of_canonical_string():
    assert audit_hash(audit_fields()) == sha(audit_canonical(audit_fields()))


def test_audit_hash_ignores_key_order_and_unknown_keys():
    fields = audit_fields()
    reordered = dict(reversed(list(fields.items())))
    reordered["signatureId"] = "ignored"
    assert audit_hash(reordered) == audit_hash(fields)


def test_absent_optional_field_equals_empty_string():
    assert audit_hash(audit_fields(city=None)) == audit_hash(audit_fields(city=""))
    assert audit_hash(audit_fields()) == audit_hash(audit_fields(zip=None))


def test_audit_hash_binds_every_field():
    base = audit_hash(audit_fields())
    changes = {
        "consent": False, "email": "b@b.co", "firstName": "Anne", "ip": "1.2.3.5",
        "lastName": "Li", "method": "drawn", "petitionHash": "q", "signatureImageHash": "t",
        "timestamp": "2024-05-01T12:00:00.001Z", "userAgent": "UA2", "city": "X",
        "comment": "hi", "country": "US", "state": "IL", "zip": "62701",
    }
    for key, value in changes.items():
        assert audit_hash(audit_fields(**{key: value})) != base, key


def test_audit_hash_missing_required_field():
    fields = audit_fields()
    del fields["timestamp"]
    with pytest.raises(ValueError):
        audit_hash(fields)


def test_audit_timestamp_millisecond_precision():
    dt = datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
    assert audit_timestamp(dt) == "2024-05-01T12:00:00.123Z"
    assert audit_timestamp(dt.replace(microsecond=0)) == "2024-05-01T12:00:00.000Z"


def test_audit_timestamp_converts_to_utc():
    dt = datetime(2024, 5, 1, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))
    assert audit_timestamp(dt) == "2024-05-01T12:00:00.000Z"


def test_otp_hash_binds_code_email_and_secret():
    h = otp_hash("123456", "a@b.co", SECRET)
    assert h == sha(f"123456:a@b.co:{SECRET}")
    assert verify_otp_hash("123456", "a@b.co", h, SECRET)
    assert not verify_otp_hash("123457", "a@b.co", h, SECRET)
    assert not verify_otp_hash("123456", "c@b.co", h, SECRET)
    assert not verify_otp_hash("123456", "a@b.co", h, SECRET + "x")


def test_otp_code_range_and_format():
    for _ in range(10000):
        code = otp_code()
        assert len(code) == 6
        assert code.isdigit()
        assert 100000 <= int(code) <= 999999
