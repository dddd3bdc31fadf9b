import threading

import pytest

from petitionseal.errors import DeliveryFailedError, ErrorCode, InvalidCodeError, RateLimitedError
from petitionseal.hashing import otp_hash
from petitionseal.rate_limit import LocalRateLimiter, RateLimitPolicy
from petitionseal.stores import SqliteOtpStore

EMAIL = "jane.doe@example.com"
IP = "203.0.113.7"


@pytest.fixture
def otp(services):
    return services.otp


def wrong_code(code):
    return "100000" if code != "100000" else "100001"


def test_request_stores_only_the_hash(otp, sender, db, settings):
    request = otp.request_otp(EMAIL, IP)
    code = sender.last_code(EMAIL)

    row = db.connection().execute("SELECT * FROM otp_requests WHERE id=?", (request.id,)).fetchone()
    assert row["code_hash"] == otp_hash(code, EMAIL, settings.session_secret)
    assert code not in [str(v) for v in tuple(row)]
    assert row["expires_at"] - row["created_at"] == 600
    assert row["origin_ip"] == IP


def test_email_contents(otp, sender):
    otp.request_otp(EMAIL, IP)
    to, message = sender.sent[-1]
    assert to == EMAIL
    assert message.subject == "Your verification code"
    assert "10 minutes" in message.text


def test_verify_returns_token_for_email(otp, sender, services):
    otp.request_otp(EMAIL, IP)
    token = otp.verify_otp(EMAIL, sender.last_code(EMAIL))
    assert services.signatures.tokens.verify(token).email == EMAIL


def test_code_is_single_use(otp, sender):
    otp.request_otp(EMAIL, IP)
    code = sender.last_code(EMAIL)
    otp.verify_otp(EMAIL, code)
    with pytest.raises(InvalidCodeError):
        otp.verify_otp(EMAIL, code)


def test_wrong_code_does_not_consume(otp, sender):
    otp.request_otp(EMAIL, IP)
    code = sender.last_code(EMAIL)
    with pytest.raises(InvalidCodeError):
        otp.verify_otp(EMAIL, wrong_code(code))
    assert otp.verify_otp(EMAIL, code)


def test_expired_code_rejected(otp, sender, clock):
    otp.request_otp(EMAIL, IP)
    code = sender.last_code(EMAIL)
    clock.advance(600)
    with pytest.raises(InvalidCodeError):
        otp.verify_otp(EMAIL, code)


def test_code_bound_to_email(otp, sender):
    otp.request_otp(EMAIL, IP)
    with pytest.raises(InvalidCodeError):
        otp.verify_otp("someone.else@example.com", sender.last_code(EMAIL))


def test_newest_request_wins(otp, sender, clock):
    otp.request_otp(EMAIL, IP)
    first = sender.last_code(EMAIL)
    clock.advance(5)
    otp.request_otp(EMAIL, IP)
    second = sender.last_code(EMAIL)
    if first != second:
        with pytest.raises(InvalidCodeError):
            otp.verify_otp(EMAIL, first)
    assert otp.verify_otp(EMAIL, second)


def test_rejections_are_uniform(otp, sender):
    with pytest.raises(InvalidCodeError) as missing:
        otp.verify_otp(EMAIL, "123456")
    otp.request_otp(EMAIL, IP)
    code = sender.last_code(EMAIL)
    with pytest.raises(InvalidCodeError) as mismatch:
        otp.verify_otp(EMAIL, wrong_code(code))
    otp.verify_otp(EMAIL, code)
    with pytest.raises(InvalidCodeError) as consumed:
        otp.verify_otp(EMAIL, code)

    bodies = {str(e.value.to_dict()) for e in (missing, mismatch, consumed)}
    assert len(bodies) == 1
    assert missing.value.code == ErrorCode.INVALID_CODE
    assert missing.value.message == "Invalid or expired verification code."


def test_concurrent_verification_consumes_once(otp, sender):
    otp.request_otp(EMAIL, IP)
    code = sender.last_code(EMAIL)
    workers = 8
    barrier = threading.Barrier(workers)
    results = []
    lock = threading.Lock()

    def attempt():
        barrier.wait()
        try:
            otp.verify_otp(EMAIL, code)
            outcome = "ok"
        except InvalidCodeError:
            outcome = "invalid"
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=attempt) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count("ok") == 1
    assert results.count("invalid") == workers - 1


def test_delivery_failure_removes_request(otp, sender, db):
    sender.fail = True
    with pytest.raises(DeliveryFailedError) as exc:
        otp.request_otp(EMAIL, IP)
    assert exc.value.retryable
    assert db.stats()["otp_requests_count"] == 0


def test_unexpected_sender_error_removes_request(otp, sender, db, monkeypatch):
    def broken_send(to, message):
        raise TimeoutError("connection stalled")

    monkeypatch.setattr(sender, "send", broken_send)
    with pytest.raises(DeliveryFailedError):
        otp.request_otp(EMAIL, IP)
    assert db.stats()["otp_requests_count"] == 0


def test_email_rate_limit(make_services, petition, clock, db):
    policy = RateLimitPolicy(otp_email=LocalRateLimiter(5, 900, "otp:", clock))
    otp = make_services(policy=policy).otp
    for _ in range(5):
        otp.request_otp(EMAIL, IP)
    with pytest.raises(RateLimitedError) as exc:
        otp.request_otp(EMAIL, IP)
    assert exc.value.code == ErrorCode.RATE_LIMITED
    assert db.stats()["otp_requests_count"] == 5

    otp.request_otp("other@example.com", IP)
    clock.advance(901)
    otp.request_otp(EMAIL, IP)


def test_ip_rate_limit(make_services, petition, clock):
    policy = RateLimitPolicy(otp_ip=LocalRateLimiter(20, 900, "otp-ip:", clock))
    otp = make_services(policy=policy).otp
    for i in range(20):
        otp.request_otp(f"signer{i}@example.com", IP)
    with pytest.raises(RateLimitedError):
        otp.request_otp("signer99@example.com", IP)
    otp.request_otp("signer99@example.com", "198.51.100.1")


def test_cleanup_expired(otp, db, clock):
    otp.request_otp(EMAIL, IP)
    clock.advance(300)
    otp.request_otp("other@example.com", IP)
    clock.advance(301)
    assert otp.cleanup_expired() == 1
    assert db.stats()["otp_requests_count"] == 1
    assert SqliteOtpStore(db).find_latest_valid("other@example.com", int(clock.now)) is not None
