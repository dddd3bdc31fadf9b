"""
Domain records and request bodies.

Dataclasses model what the pipeline stores and returns; pydantic models
validate what arrives over HTTP.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .errors import InputError
from .hashing import petition_hash
from .security import normalize_email, validate_otp_code

SIGNATURE_PURPOSE = "signature"


# ============================================================
# Domain records
# ============================================================

@dataclass
class OtpRequest:
    email: str
    code_hash: str
    created_at: int
    expires_at: int
    origin_ip: str
    consumed_at: Optional[int] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class VerificationClaims:
    email: str
    purpose: str
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class PetitionSnapshot:
    """Petition content exactly as hashed."""
    title: str
    body_markdown: str
    version: str

    def content_hash(self) -> str:
        return petition_hash(self.title, self.body_markdown, self.version)


@dataclass
class Petition:
    id: str
    slug: str
    title: str
    body_markdown: str
    version: str
    goal_count: int = 1000
    is_live: bool = True

    def snapshot(self) -> PetitionSnapshot:
        return PetitionSnapshot(self.title, self.body_markdown, self.version)


@dataclass(frozen=True)
class DrawnSignature:
    image: bytes
    method: Literal["drawn"] = "drawn"


@dataclass(frozen=True)
class TypedSignature:
    text: str
    method: Literal["typed"] = "typed"


SignatureMark = Union[DrawnSignature, TypedSignature]


@dataclass(frozen=True)
class SignerDetails:
    first_name: str
    last_name: str
    email: str
    consent: bool
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None
    comment: Optional[str] = None

    @property
    def location(self) -> str:
        return ", ".join(p for p in (self.city, self.state, self.country) if p)


@dataclass
class SignatureRecord:
    """
    One signature, written once.

    ``created_at`` is the exact ISO-8601 string that went into the audit
    hash, so ``audit_fields()`` reproduces the hash input bit-for-bit.
    """
    id: str
    petition_id: str
    signer: SignerDetails
    signature: SignatureMark
    petition_hash: str
    signature_image_hash: str
    audit_hash: str
    ip: str
    user_agent: str
    email_verified_at: str
    created_at: str
    receipt_pdf: Optional[bytes] = None
    receipt_mime: Optional[str] = None

    @property
    def method(self) -> str:
        return self.signature.method

    def audit_fields(self) -> Dict[str, Any]:
        s = self.signer
        return {
            "comment": s.comment,
            "consent": s.consent,
            "country": s.country,
            "city": s.city,
            "email": s.email,
            "firstName": s.first_name,
            "ip": self.ip,
            "lastName": s.last_name,
            "method": self.method,
            "petitionHash": self.petition_hash,
            "signatureImageHash": self.signature_image_hash,
            "state": s.state,
            "timestamp": self.created_at,
            "userAgent": self.user_agent,
            "zip": s.zip,
        }


class ReceiptStatus(str, Enum):
    ATTACHED = "attached"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class SubmissionResult:
    """The committed signature plus the outcome of the optional receipt."""
    signature_id: str
    audit_hash: str
    receipt: ReceiptStatus = ReceiptStatus.SKIPPED
    receipt_error: Optional[str] = None


@dataclass(frozen=True)
class AuditVerification:
    """Public, non-identifying facts about a verified signature."""
    petition_title: str
    petition_version: str
    signed_at: str
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None

    @property
    def location(self) -> Optional[str]:
        return ", ".join(p for p in (self.city, self.state, self.country) if p) or None


@dataclass
class PetitionStats:
    count: int
    goal: int
    recent: list = field(default_factory=list)
    by_state: Dict[str, int] = field(default_factory=dict)


# ============================================================
# Request bodies
# ============================================================

def _checked(check, value):
    # pydantic only reports ValueError as a field error
    try:
        return check(value)
    except InputError as e:
        raise ValueError(e.message) from e


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class OtpRequestBody(CamelModel):
    email: str

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        return _checked(normalize_email, v)


class OtpVerifyBody(CamelModel):
    email: str
    code: str

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        return _checked(normalize_email, v)

    @field_validator("code")
    @classmethod
    def _code(cls, v):
        return _checked(validate_otp_code, v)


class SignatureInput(CamelModel):
    petition_slug: str = Field(min_length=1, max_length=128)
    first_name: str = Field(min_length=1, max_length=60)
    last_name: str = Field(min_length=1, max_length=60)
    email: str
    city: Optional[str] = Field(default=None, max_length=100)
    state: Optional[str] = Field(default=None, min_length=2, max_length=2)
    zip: Optional[str] = Field(default=None, min_length=3, max_length=10)
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)
    comment: Optional[str] = Field(default=None, max_length=500)
    consent: bool
    method: Literal["drawn", "typed"]
    signature_image_base64: Optional[str] = None
    typed_signature: Optional[str] = Field(default=None, max_length=200)

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        return _checked(normalize_email, v)

    @field_validator("consent")
    @classmethod
    def _consent(cls, v):
        if v is not True:
            raise ValueError("Consent is required")
        return v

    @model_validator(mode="after")
    def _signature_matches_method(self):
        if self.method == "drawn":
            if not self.signature_image_base64:
                raise ValueError("signatureImageBase64 is required for drawn signatures")
            if self.typed_signature:
                raise ValueError("typedSignature is not allowed for drawn signatures")
        else:
            if not self.typed_signature or not self.typed_signature.strip():
                raise ValueError("typedSignature is required for typed signatures")
            if self.signature_image_base64:
                raise ValueError("signatureImageBase64 is not allowed for typed signatures")
        return self

    def signer(self) -> SignerDetails:
        return SignerDetails(
            first_name=self.first_name,
            last_name=self.last_name,
            email=self.email,
            consent=self.consent,
            city=self.city,
            state=self.state,
            zip=self.zip,
            country=self.country,
            comment=self.comment,
        )


class SignRequestBody(CamelModel):
    token: str = Field(min_length=1)
    payload: SignatureInput
