"""
Signature submission.

``SignatureService.submit`` turns a verification token plus a signature
submission into exactly one committed signature record. Each step is a
hard gate: nothing is written until every earlier check has passed, and the
record is written in a single insert. The receipt is rendered afterwards
and attached in a separate statement; its failure never undoes the record.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from .config import Settings
from .errors import (
    AlreadySignedError,
    EmailMismatchError,
    InvalidSignatureError,
    InvalidTokenError,
    PetitionNotFoundError,
    PetitionNotLiveError,
)
from .hashing import audit_hash, audit_timestamp, image_hash, typed_signature_hash
from .logging_config import audit_log
from .models import (
    DrawnSignature,
    Petition,
    PetitionStats,
    ReceiptStatus,
    SignatureInput,
    SignatureMark,
    SignatureRecord,
    SubmissionResult,
    TypedSignature,
)
from .rate_limit import RateLimiter, enforce
from .receipt import ReceiptData, ReceiptRenderer
from .security import decode_signature_image
from .stores import PetitionStore, SignatureStore
from .tokens import TokenService
from .util import generate_id

logger = logging.getLogger(__name__)

SIGN_RATE_LIMIT_MESSAGE = "Too many signature attempts. Please try again later."
RECENT_SIGNERS = 10


def _as_datetime(epoch: float) -> datetime:
    return datetime.fromtimestamp(epoch, tz=timezone.utc)


class SignatureService:

    def __init__(
        self,
        petitions: PetitionStore,
        signatures: SignatureStore,
        tokens: TokenService,
        settings: Settings,
        receipt_renderer: Optional[ReceiptRenderer] = None,
        email_limiter: Optional[RateLimiter] = None,
        ip_limiter: Optional[RateLimiter] = None,
        clock: Callable[[], float] = time.time
    ):
        self.petitions = petitions
        self.signatures = signatures
        self.tokens = tokens
        self.settings = settings
        self.receipt_renderer = receipt_renderer
        self.email_limiter = email_limiter
        self.ip_limiter = ip_limiter
        self._clock = clock

    def submit(self, token: str, submission: SignatureInput, ip: str, user_agent: str) -> SubmissionResult:
        """
        Validate and record one signature.

        Raises:
            InvalidTokenError: Token malformed, tampered, expired or for another purpose
            EmailMismatchError: Token email differs from the submission email
            RateLimitedError: Submission limit exhausted
            PetitionNotFoundError: Unknown petition slug
            PetitionNotLiveError: Petition closed to signatures
            AlreadySignedError: Email already signed this petition
            InvalidSignatureError: Signature payload rejected
        """
        try:
            claims = self.tokens.verify(token)
        except InvalidTokenError as e:
            audit_log.security_event("token_rejected", severity="medium", code=e.code.value)
            raise
        if claims.email != submission.email:
            audit_log.signature_rejected("email_mismatch", submission.petition_slug)
            raise EmailMismatchError()

        enforce(self.email_limiter, submission.email, "sign", SIGN_RATE_LIMIT_MESSAGE)
        enforce(self.ip_limiter, ip, "sign", SIGN_RATE_LIMIT_MESSAGE)

        petition = self.petitions.find_by_slug(submission.petition_slug)
        if petition is None:
            raise PetitionNotFoundError()
        if not petition.is_live:
            audit_log.signature_rejected("petition_not_live", petition.slug)
            raise PetitionNotLiveError()

        if self.signatures.exists_for(submission.email, petition.id):
            audit_log.signature_rejected("already_signed", petition.slug)
            raise AlreadySignedError()

        p_hash = petition.snapshot().content_hash()
        mark, mark_hash = self._signature_mark(submission)

        signer = submission.signer()
        record = SignatureRecord(
            id=generate_id(16),
            petition_id=petition.id,
            signer=signer,
            signature=mark,
            petition_hash=p_hash,
            signature_image_hash=mark_hash,
            audit_hash="",
            ip=ip,
            user_agent=user_agent,
            email_verified_at=audit_timestamp(_as_datetime(claims.issued_at)),
            created_at=audit_timestamp(_as_datetime(self._clock())),
        )
        record.audit_hash = audit_hash(record.audit_fields())

        self.signatures.insert(record)
        audit_log.signature_recorded(record.id, petition.id, record.audit_hash, record.method)

        receipt, receipt_error = self._attach_receipt(record, petition)
        return SubmissionResult(
            signature_id=record.id,
            audit_hash=record.audit_hash,
            receipt=receipt,
            receipt_error=receipt_error,
        )

    def _signature_mark(self, submission: SignatureInput):
        if submission.method == "drawn":
            image = decode_signature_image(
                submission.signature_image_base64 or "",
                self.settings.signature_image_max_bytes
            )
            mark: SignatureMark = DrawnSignature(image=image)
            return mark, image_hash(image)

        text = submission.typed_signature or ""
        if not text.strip() or len(text) > self.settings.typed_signature_max_length:
            raise InvalidSignatureError("Invalid typed signature", field="typedSignature")
        return TypedSignature(text=text), typed_signature_hash(text)

    def _attach_receipt(self, record: SignatureRecord, petition: Petition):
        if self.receipt_renderer is None or not self.settings.receipts_enabled:
            return ReceiptStatus.SKIPPED, None
        try:
            pdf = self.receipt_renderer.render(ReceiptData(
                record=record,
                petition=petition,
                verify_url=self.settings.audit_url(record.audit_hash),
            ))
            self.signatures.attach_receipt(record.id, pdf, self.receipt_renderer.mime)
        except Exception as e:
            logger.exception("Receipt generation failed for %s", record.id)
            audit_log.receipt_failed(record.id, str(e))
            return ReceiptStatus.FAILED, str(e)
        return ReceiptStatus.ATTACHED, None

    def retry_receipt(self, signature_id: str) -> ReceiptStatus:
        """Render and attach a receipt for a record that has none."""
        record = self.signatures.find_by_id(signature_id)
        if record is None:
            raise LookupError(signature_id)
        if record.receipt_pdf is not None:
            return ReceiptStatus.ATTACHED
        petition = self.petitions.find_by_id(record.petition_id)
        status, _ = self._attach_receipt(record, petition)
        return status

    # ------------------------------------------------------------
    # Public read side
    # ------------------------------------------------------------

    def current_petition(self) -> Petition:
        petition = self.petitions.first()
        if petition is None:
            raise PetitionNotFoundError("No petition found")
        return petition

    def public_petition(self) -> dict:
        petition = self.current_petition()
        return {
            "slug": petition.slug,
            "title": petition.title,
            "version": petition.version,
            "bodyMarkdown": petition.body_markdown,
            "isLive": petition.is_live,
            "goal": petition.goal_count,
        }

    def petition_stats(self, petition_id: Optional[str] = None) -> PetitionStats:
        """Signature count, goal, recent signers (first name and last initial) and per-state counts."""
        petition = self.petitions.find_by_id(petition_id) if petition_id else self.petitions.first()
        if petition_id and petition is None:
            raise PetitionNotFoundError()
        raw = self.signatures.stats(petition.id if petition else None, recent_limit=RECENT_SIGNERS)
        recent = [
            {
                "first": row["first_name"],
                "lastInitial": row["last_name"][:1],
                "state": row["state"],
            }
            for row in raw["recent"]
        ]
        return PetitionStats(
            count=raw["count"],
            goal=petition.goal_count if petition else 1000,
            recent=recent,
            by_state=raw["by_state"],
        )

    def receipt_for(self, signature_id: str) -> Optional[SignatureRecord]:
        """The record if it has a stored receipt, else None."""
        record = self.signatures.find_by_id(signature_id)
        if record is None or record.receipt_pdf is None:
            return None
        return record
