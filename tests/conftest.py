import os, re, sys

import pytest
from fastapi.testclient import TestClient

# Ensure the package is importable without installation
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Required configuration must exist before the app is imported
os.environ.setdefault("PETITIONSEAL_ENV", "test")
os.environ.setdefault("SESSION_SECRET", "test-session-secret-0123456789abcdef")
os.environ.setdefault("SITE_BASE_URL", "https://petition.example")
os.environ.setdefault("RESEND_API_KEY", "re_test_key")

from petitionseal.config import Settings, reset_settings_cache
from petitionseal.db import Database
from petitionseal.email_sender import EmailDeliveryError, EmailSender
from petitionseal.main import app, build_services
from petitionseal.models import Petition, SignatureInput
from petitionseal.rate_limit import RateLimitPolicy
from petitionseal.stores import SqlitePetitionStore

# 1x1 transparent PNG
PNG_1X1_B64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
PETITION_BODY = "We ask the council to protect local parks.\r\n\r\nSigned by residents."


class RecordingEmailSender(EmailSender):
    """Keeps sent messages in memory; flip ``fail`` to simulate a provider outage."""

    name = "recording"

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, message):
        if self.fail:
            raise EmailDeliveryError(self.name, "simulated outage")
        self.sent.append((to, message))

    def last_code(self, to):
        for addr, message in reversed(self.sent):
            if addr == to:
                return re.search(r"\b(\d{6})\b", message.text).group(1)
        raise AssertionError(f"no code sent to {to}")


class FakeClock:
    def __init__(self, start=1714564800.0):  # 2024-05-01T12:00:00Z
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture(autouse=True)
def _reset_settings():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        env="test",
        session_secret="test-session-secret-0123456789abcdef",
        site_base_url="https://petition.example",
        database_path=str(tmp_path / "petitionseal.db"),
        resend_api_key="re_test_key",
        log_json=False,
    )


@pytest.fixture
def db(settings):
    database = Database(settings.database_path)
    database.init_schema()
    yield database
    database.close()


@pytest.fixture
def sender():
    return RecordingEmailSender()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def petition(db):
    return SqlitePetitionStore(db).insert(Petition(
        id="pet-1",
        slug="environmental-protection",
        title="Protect Our Local Environment",
        body_markdown=PETITION_BODY,
        version="v1.0",
        goal_count=1000,
    ))


@pytest.fixture
def make_services(settings, db, sender, clock):
    """Build services over the test database; rate limits off unless a policy is given."""
    def _make(policy=None, receipt_renderer=None, settings_override=None):
        return build_services(
            settings_override or settings,
            db=db,
            email_sender=sender,
            receipt_renderer=receipt_renderer,
            policy=policy or RateLimitPolicy.disabled(),
            clock=clock,
        )
    return _make


@pytest.fixture
def services(make_services, petition):
    return make_services()


@pytest.fixture
def verified_token(sender):
    """Run a full OTP cycle for an email and return the verification token."""
    def _token(otp_service, email="jane.doe@example.com", ip="203.0.113.7"):
        otp_service.request_otp(email, ip)
        return otp_service.verify_otp(email, sender.last_code(email))
    return _token


@pytest.fixture
def submission():
    def _submission(**overrides):
        data = {
            "petitionSlug": "environmental-protection",
            "firstName": "Jane",
            "lastName": "Doe",
            "email": "jane.doe@example.com",
            "city": "Springfield",
            "state": "IL",
            "country": "US",
            "consent": True,
            "method": "drawn",
            "signatureImageBase64": "data:image/png;base64," + PNG_1X1_B64,
        }
        data.update(overrides)
        return SignatureInput.model_validate({k: v for k, v in data.items() if v is not None})
    return _submission


@pytest.fixture
def client(services):
    app.state.services = services
    return TestClient(app)
