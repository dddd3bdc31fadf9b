"""
Configuration module for PetitionSeal.

Centralizes all configuration with environment variable support and
validation. The service refuses to start when required secrets are absent.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

from .errors import ConfigError

MIN_SECRET_LENGTH = 32
ENVIRONMENTS = ("dev", "stage", "prod", "test")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return int(raw)


@dataclass(frozen=True)
class RateLimitRule:
    """A single limit: at most ``limit`` hits per ``window_seconds``."""
    limit: int
    window_seconds: int


@dataclass(frozen=True)
class Settings:
    env: str = "dev"
    session_secret: str = ""
    site_base_url: str = ""
    database_path: str = "data/petitionseal.db"

    # Lifetimes (seconds)
    otp_ttl_seconds: int = 600
    token_ttl_seconds: int = 1800

    # Email delivery
    resend_api_key: str = ""
    postmark_server_token: str = ""
    email_from: str = "noreply@petition.com"
    email_timeout_seconds: float = 10.0

    # Rate limiting
    rate_limit_enabled: bool = True
    redis_url: str = ""
    redis_timeout_seconds: float = 2.0
    otp_email_rule: RateLimitRule = RateLimitRule(5, 15 * 60)
    otp_ip_rule: RateLimitRule = RateLimitRule(20, 15 * 60)
    sign_email_rule: RateLimitRule = RateLimitRule(3, 60 * 60)
    sign_ip_rule: RateLimitRule = RateLimitRule(10, 60 * 60)

    # Signatures and receipts
    signature_image_max_bytes: int = 512 * 1024
    typed_signature_max_length: int = 200
    receipts_enabled: bool = True

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from environment variables."""
        return cls(
            env=os.getenv("PETITIONSEAL_ENV", "dev"),
            session_secret=os.getenv("SESSION_SECRET", ""),
            site_base_url=os.getenv("SITE_BASE_URL", "").rstrip("/"),
            database_path=os.getenv("DATABASE_PATH", "data/petitionseal.db"),
            otp_ttl_seconds=_env_int("OTP_TTL_SECONDS", 600),
            token_ttl_seconds=_env_int("TOKEN_TTL_SECONDS", 1800),
            resend_api_key=os.getenv("RESEND_API_KEY", ""),
            postmark_server_token=os.getenv("POSTMARK_SERVER_TOKEN", ""),
            email_from=os.getenv("EMAIL_FROM", "noreply@petition.com"),
            email_timeout_seconds=float(os.getenv("EMAIL_TIMEOUT_SECONDS", "10")),
            rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", True),
            redis_url=os.getenv("REDIS_URL", ""),
            redis_timeout_seconds=float(os.getenv("REDIS_TIMEOUT_SECONDS", "2")),
            otp_email_rule=RateLimitRule(_env_int("OTP_EMAIL_LIMIT", 5), _env_int("OTP_WINDOW_SECONDS", 900)),
            otp_ip_rule=RateLimitRule(_env_int("OTP_IP_LIMIT", 20), _env_int("OTP_WINDOW_SECONDS", 900)),
            sign_email_rule=RateLimitRule(_env_int("SIGN_EMAIL_LIMIT", 3), _env_int("SIGN_WINDOW_SECONDS", 3600)),
            sign_ip_rule=RateLimitRule(_env_int("SIGN_IP_LIMIT", 10), _env_int("SIGN_WINDOW_SECONDS", 3600)),
            signature_image_max_bytes=_env_int("SIGNATURE_IMAGE_MAX_BYTES", 512 * 1024),
            typed_signature_max_length=_env_int("TYPED_SIGNATURE_MAX_LENGTH", 200),
            receipts_enabled=_env_bool("RECEIPTS_ENABLED", True),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=_env_bool("LOG_JSON", True),
        )

    def problems(self) -> List[str]:
        """Return every configuration problem found (empty when valid)."""
        problems = []
        if self.env not in ENVIRONMENTS:
            problems.append(f"PETITIONSEAL_ENV must be one of {', '.join(ENVIRONMENTS)}")
        if not self.session_secret:
            problems.append("SESSION_SECRET is required")
        elif len(self.session_secret) < MIN_SECRET_LENGTH:
            problems.append(f"SESSION_SECRET must be at least {MIN_SECRET_LENGTH} characters")
        if not self.site_base_url.startswith(("http://", "https://")):
            problems.append("SITE_BASE_URL must be an http(s) URL")
        if not (self.resend_api_key or self.postmark_server_token):
            problems.append("Either RESEND_API_KEY or POSTMARK_SERVER_TOKEN must be provided")
        if self.otp_ttl_seconds <= 0 or self.token_ttl_seconds <= 0:
            problems.append("OTP_TTL_SECONDS and TOKEN_TTL_SECONDS must be positive")
        for name in ("otp_email_rule", "otp_ip_rule", "sign_email_rule", "sign_ip_rule"):
            rule = getattr(self, name)
            if rule.limit < 1 or rule.window_seconds < 1:
                problems.append(f"{name} must have a positive limit and window")
        return problems

    def validate(self) -> "Settings":
        """
        Fail fast on invalid configuration.

        Raises:
            ConfigError: Listing every problem found
        """
        problems = self.problems()
        if problems:
            raise ConfigError(problems)
        return self

    def audit_url(self, audit_hash: str) -> str:
        """Public verification link for an audit hash."""
        return f"{self.site_base_url}/api/verify?audit={audit_hash}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and validate settings from the environment (cached)."""
    return Settings.from_env().validate()


def reset_settings_cache() -> None:
    """Forget cached settings (tests and config reloads)."""
    get_settings.cache_clear()


def is_production(settings: Optional[Settings] = None) -> bool:
    """Check if running in production mode."""
    return (settings or get_settings()).env == "prod"
