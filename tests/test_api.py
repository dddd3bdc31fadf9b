import secrets

from conftest import PNG_1X1_B64

EMAIL = "jane.doe@example.com"


def payload(**overrides):
    data = {
        "petitionSlug": "environmental-protection",
        "firstName": "Jane",
        "lastName": "Doe",
        "email": EMAIL,
        "city": "Springfield",
        "state": "IL",
        "country": "US",
        "consent": True,
        "method": "drawn",
        "signatureImageBase64": "data:image/png;base64," + PNG_1X1_B64,
    }
    data.update(overrides)
    return {k: v for k, v in data.items() if v is not None}


def get_token(client, sender, email=EMAIL):
    r = client.post("/api/otp/request", json={"email": email})
    assert r.status_code == 200, r.text
    r = client.post("/api/otp/verify", json={"email": email, "code": sender.last_code(email.strip().lower())})
    assert r.status_code == 200, r.text
    return r.json()["token"]


def sign(client, token, **overrides):
    return client.post("/api/sign", json={"token": token, "payload": payload(**overrides)},
                       headers={"X-Forwarded-For": "198.51.100.20, 10.0.0.1", "User-Agent": "pytest-agent"})


# TV-01: Full flow -> signature recorded and publicly verifiable
def test_tv01_full_flow(client, sender):
    r = sign(client, get_token(client, sender))
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["ok"] is True
    assert len(body["auditHash"]) == 64
    assert body["receipt"] == "attached"
    assert body["receiptUrl"] == f"/api/files/receipt/{body['signatureId']}"
    assert body["verifyUrl"] == f"https://petition.example/api/verify?audit={body['auditHash']}"

    v = client.get("/api/verify", params={"audit": body["auditHash"]})
    assert v.status_code == 200
    data = v.json()
    assert data["valid"] is True
    assert data["petition"] == {"title": "Protect Our Local Environment", "version": "v1.0"}
    assert data["location"] == "Springfield, IL, US"
    assert EMAIL not in v.text and "Jane" not in v.text


# TV-02: Client address and user agent come from the request
def test_tv02_ip_and_user_agent_recorded(client, sender, services):
    body = sign(client, get_token(client, sender)).json()
    record = services.signatures.signatures.find_by_id(body["signatureId"])
    assert record.ip == "198.51.100.20"
    assert record.user_agent == "pytest-agent"


# TV-03: Receipt download
def test_tv03_receipt_download(client, sender):
    body = sign(client, get_token(client, sender)).json()
    r = client.get(body["receiptUrl"])
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert r.content.startswith(b"%PDF")
    assert client.get("/api/files/receipt/unknown").status_code == 404


# TV-04: Wrong code -> INVALID_CODE, nothing consumed
def test_tv04_wrong_code(client, sender):
    client.post("/api/otp/request", json={"email": EMAIL})
    code = sender.last_code(EMAIL)
    wrong = "100000" if code != "100000" else "100001"
    r = client.post("/api/otp/verify", json={"email": EMAIL, "code": wrong})
    assert r.status_code == 400
    assert r.json() == {"error": "INVALID_CODE", "message": "Invalid or expired verification code."}
    assert client.post("/api/otp/verify", json={"email": EMAIL, "code": code}).status_code == 200


# TV-05: Email is normalized at the boundary
def test_tv05_email_normalized(client, sender):
    token = get_token(client, sender, email="  Jane.Doe@Example.com ")
    r = sign(client, token, email="JANE.DOE@example.com")
    assert r.status_code == 200, r.text


# TV-06: Second signature for the same email -> 409 ALREADY_SIGNED
def test_tv06_already_signed(client, sender):
    assert sign(client, get_token(client, sender)).status_code == 200
    r = sign(client, get_token(client, sender))
    assert r.status_code == 409
    assert r.json()["error"] == "ALREADY_SIGNED"


# TV-07: Token for another email -> 403 EMAIL_MISMATCH
def test_tv07_email_mismatch(client, sender):
    token = get_token(client, sender, email="someone.else@example.com")
    r = sign(client, token)
    assert r.status_code == 403
    assert r.json()["error"] == "EMAIL_MISMATCH"


# TV-08: Tampered token -> 401 INVALID_TOKEN
def test_tv08_tampered_token(client, sender):
    token = get_token(client, sender)
    r = sign(client, token[:-2] + ("AA" if not token.endswith("AA") else "BB"))
    assert r.status_code == 401
    assert r.json()["error"] == "INVALID_TOKEN"


# TV-09: Bad input -> 400 INVALID_INPUT with field names
def test_tv09_invalid_input(client, sender):
    token = get_token(client, sender)
    r = sign(client, token, consent=False, state="Illinois")
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "INVALID_INPUT"
    assert "payload.consent" in body["fields"]
    assert "payload.state" in body["fields"]

    r = sign(client, token, method="typed")
    assert r.status_code == 400

    r = client.post("/api/otp/request", json={"email": "not-an-email"})
    assert r.status_code == 400
    assert r.json()["fields"] == ["email"]


# TV-10: Undecodable image -> 400 INVALID_SIGNATURE
def test_tv10_invalid_signature(client, sender):
    r = sign(client, get_token(client, sender), signatureImageBase64="data:image/png;base64,@@@")
    assert r.status_code == 400
    assert r.json()["error"] == "INVALID_SIGNATURE"


# TV-11: Unknown or malformed audit hash -> 404 valid:false
def test_tv11_verify_not_found(client):
    for value in (secrets.token_hex(32), "not-a-hash"):
        r = client.get("/api/verify", params={"audit": value})
        assert r.status_code == 404
        assert r.json()["valid"] is False
    assert client.get("/api/verify").status_code == 400


# TV-12: Stats and petition data
def test_tv12_stats_and_petition(client, sender):
    sign(client, get_token(client, sender))
    stats = client.get("/api/stats").json()
    assert stats["count"] == 1
    assert stats["goal"] == 1000
    assert stats["recent"] == [{"first": "Jane", "lastInitial": "D", "state": "IL"}]
    assert stats["byState"] == {"IL": 1}

    petition = client.get("/api/petition").json()
    assert petition["slug"] == "environmental-protection"
    assert petition["isLive"] is True


# TV-13: Delivery failure -> 503 DELIVERY_FAILED
def test_tv13_delivery_failed(client, sender):
    sender.fail = True
    r = client.post("/api/otp/request", json={"email": EMAIL})
    assert r.status_code == 503
    assert r.json()["error"] == "DELIVERY_FAILED"


# TV-14: Request id echoed and health check
def test_tv14_request_id_and_health(client):
    r = client.get("/healthz", headers={"X-Request-ID": "req-abc"})
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "env": "test"}
    assert r.headers["x-request-id"] == "req-abc"
