"""
One-time code issuance and verification.

A code is proof of control of an email address. Only its hash is stored;
a request is consumed at most once, enforced by a conditional update in
the store rather than by any lock held here.
"""

import logging
import time
from typing import Callable, Optional

from .config import Settings
from .email_sender import EmailDeliveryError, EmailSender, build_otp_email
from .errors import DeliveryFailedError, InvalidCodeError
from .hashing import otp_code, otp_hash, verify_otp_hash
from .logging_config import audit_log
from .models import OtpRequest
from .rate_limit import RateLimiter, enforce
from .stores import OtpStore
from .tokens import TokenService

logger = logging.getLogger(__name__)

OTP_RATE_LIMIT_MESSAGE = "Too many verification requests. Please try again later."


class OtpService:

    def __init__(
        self,
        store: OtpStore,
        email_sender: EmailSender,
        tokens: TokenService,
        settings: Settings,
        email_limiter: Optional[RateLimiter] = None,
        ip_limiter: Optional[RateLimiter] = None,
        clock: Callable[[], float] = time.time
    ):
        self.store = store
        self.email_sender = email_sender
        self.tokens = tokens
        self.settings = settings
        self.email_limiter = email_limiter
        self.ip_limiter = ip_limiter
        self._clock = clock

    def request_otp(self, email: str, ip: str) -> OtpRequest:
        """
        Issue a code and email it.

        The request row is written before sending and removed again if the
        send fails, so a code that never arrived cannot be verified.

        Raises:
            RateLimitedError: Per-email or per-ip limit exhausted (no row written)
            DeliveryFailedError: The email provider did not accept the message
        """
        enforce(self.email_limiter, email, "otp_request", OTP_RATE_LIMIT_MESSAGE)
        enforce(self.ip_limiter, ip, "otp_request", OTP_RATE_LIMIT_MESSAGE)

        code = otp_code()
        now = int(self._clock())
        request = self.store.insert(OtpRequest(
            email=email,
            code_hash=otp_hash(code, email, self.settings.session_secret),
            created_at=now,
            expires_at=now + self.settings.otp_ttl_seconds,
            origin_ip=ip,
        ))

        message = build_otp_email(code, ttl_minutes=max(1, self.settings.otp_ttl_seconds // 60))
        try:
            self.email_sender.send(email, message)
        except EmailDeliveryError as e:
            self.store.delete(request.id)
            audit_log.otp_delivery_failed(email, e.provider, e.detail)
            raise DeliveryFailedError() from e
        except Exception as e:
            self.store.delete(request.id)
            logger.exception("Email sender %s raised", self.email_sender.name)
            audit_log.otp_delivery_failed(email, self.email_sender.name, str(e))
            raise DeliveryFailedError() from e

        audit_log.otp_requested(email, ip, request.expires_at)
        return request

    def verify_otp(self, email: str, code: str) -> str:
        """
        Consume the latest live code for ``email`` and return a verification token.

        A missing, expired, consumed or mismatched code all fail the same way.

        Raises:
            InvalidCodeError: Uniformly, for every rejection
        """
        now = int(self._clock())
        request = self.store.find_latest_valid(email, now)

        if request is None:
            audit_log.otp_rejected(email, "no_active_code")
            raise InvalidCodeError()

        if not verify_otp_hash(code, email, request.code_hash, self.settings.session_secret):
            audit_log.otp_rejected(email, "mismatch")
            raise InvalidCodeError()

        if not self.store.mark_consumed(request.id, now):
            audit_log.otp_rejected(email, "already_consumed")
            raise InvalidCodeError()

        audit_log.otp_verified(email, request.id)
        return self.tokens.issue(email)

    def cleanup_expired(self, now: Optional[int] = None) -> int:
        """Delete expired requests. Returns the number removed."""
        if now is None:
            now = int(self._clock())
        removed = self.store.delete_expired(now)
        if removed:
            logger.info("Removed %d expired OTP requests", removed)
        return removed
