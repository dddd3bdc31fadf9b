"""
Verification tokens.

A token is proof that an email address passed OTP verification. It is a
stateless, MAC-protected claims blob:

    v1.<b64url(canonical JSON claims)>.<b64url(HMAC-SHA256(secret, "v1." + payload))>

Tokens are not single-use; they stay valid until they expire.
"""

import binascii
import json
import time
from typing import Callable

from .errors import ExpiredTokenError, InvalidTokenError, WrongPurposeError
from .models import SIGNATURE_PURPOSE, VerificationClaims
from .util import b64url_decode, b64url_encode, canonicalize, constant_time_compare, hmac_sha256

TOKEN_VERSION = "v1"


class TokenService:

    def __init__(self, secret: str, ttl_seconds: int = 1800, clock: Callable[[], float] = time.time):
        if not secret:
            raise ValueError("token secret is required")
        self._secret = secret
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _mac(self, signing_input: str) -> str:
        return b64url_encode(hmac_sha256(self._secret, signing_input))

    def issue(self, email: str, purpose: str = SIGNATURE_PURPOSE) -> str:
        now = int(self._clock())
        claims = {
            "email": email,
            "purpose": purpose,
            "iat": now,
            "exp": now + self.ttl_seconds,
        }
        payload = b64url_encode(canonicalize(claims))
        signing_input = f"{TOKEN_VERSION}.{payload}"
        return f"{signing_input}.{self._mac(signing_input)}"

    def verify(self, token: str, purpose: str = SIGNATURE_PURPOSE) -> VerificationClaims:
        """
        Check a token and return its claims.

        Checks run in order: structure and version, MAC, claims decode,
        purpose, expiry.

        Raises:
            InvalidTokenError: Malformed token or bad MAC
            WrongPurposeError: Token issued for another purpose
            ExpiredTokenError: Token past its expiry
        """
        if not isinstance(token, str):
            raise InvalidTokenError()
        parts = token.split(".")
        if len(parts) != 3 or parts[0] != TOKEN_VERSION or not parts[1] or not parts[2]:
            raise InvalidTokenError()

        signing_input = f"{parts[0]}.{parts[1]}"
        if not constant_time_compare(self._mac(signing_input), parts[2]):
            raise InvalidTokenError()

        try:
            claims = json.loads(b64url_decode(parts[1]).decode("utf-8"))
            result = VerificationClaims(
                email=str(claims["email"]),
                purpose=str(claims["purpose"]),
                issued_at=int(claims["iat"]),
                expires_at=int(claims["exp"]),
            )
        except (binascii.Error, UnicodeDecodeError, ValueError, KeyError, TypeError):
            raise InvalidTokenError()

        if result.purpose != purpose:
            raise WrongPurposeError()
        if result.expires_at <= int(self._clock()):
            raise ExpiredTokenError()
        return result
