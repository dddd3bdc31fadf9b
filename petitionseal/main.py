import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from .audit import AuditVerifier
from .config import Settings, get_settings
from .db import Database
from .email_sender import EmailSender, get_email_sender
from .errors import ErrorCode, NotFoundError, PetitionSealError
from .logging_config import configure_logging, set_request_id
from .models import OtpRequestBody, OtpVerifyBody, SignRequestBody
from .otp import OtpService
from .rate_limit import RateLimitPolicy, build_policy
from .receipt import PdfReceiptRenderer, ReceiptRenderer
from .security import extract_client_ip, sanitize_for_logging
from .signatures import SignatureService
from .stores import SqliteOtpStore, SqlitePetitionStore, SqliteSignatureStore
from .tokens import TokenService

logger = logging.getLogger(__name__)

app = FastAPI(title="PetitionSeal")


@dataclass
class Services:
    settings: Settings
    db: Database
    petitions: SqlitePetitionStore
    otp: OtpService
    signatures: SignatureService
    verifier: AuditVerifier


def build_services(
    settings: Settings,
    db: Optional[Database] = None,
    email_sender: Optional[EmailSender] = None,
    receipt_renderer: Optional[ReceiptRenderer] = None,
    policy: Optional[RateLimitPolicy] = None,
    redis_client=None,
    clock: Callable[[], float] = time.time
) -> Services:
    """Wire stores, collaborators and services for one deployment."""
    if db is None:
        db = Database(settings.database_path)
    db.init_schema()

    petitions = SqlitePetitionStore(db)
    signature_store = SqliteSignatureStore(db)
    tokens = TokenService(settings.session_secret, settings.token_ttl_seconds, clock)
    if policy is None:
        policy = build_policy(settings, redis_client)
    if email_sender is None:
        email_sender = get_email_sender(settings)
    if receipt_renderer is None:
        receipt_renderer = PdfReceiptRenderer()

    return Services(
        settings=settings,
        db=db,
        petitions=petitions,
        otp=OtpService(SqliteOtpStore(db), email_sender, tokens, settings,
                       policy.otp_email, policy.otp_ip, clock),
        signatures=SignatureService(petitions, signature_store, tokens, settings, receipt_renderer,
                                    policy.sign_email, policy.sign_ip, clock),
        verifier=AuditVerifier(signature_store, petitions),
    )


@app.on_event("startup")
def _startup():
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    app.state.services = build_services(settings)
    logger.info("PetitionSeal started (env=%s)", settings.env)


def get_services(request: Request) -> Services:
    return request.app.state.services


def client_ip(request: Request) -> str:
    return extract_client_ip(request.headers, request.client.host if request.client else None)


# ============================================================
# Middleware and error mapping
# ============================================================

@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = set_request_id(request.headers.get("x-request-id"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(PetitionSealError)
async def _petitionseal_error(request: Request, exc: PetitionSealError):
    headers = {}
    retry_after = getattr(exc, "retry_after", None)
    if retry_after:
        headers["Retry-After"] = str(int(math.ceil(retry_after)))
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    fields = sorted({
        ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
        for err in exc.errors()
    })
    body = exc.body if isinstance(exc.body, dict) else {}
    logger.info("Rejected request to %s: fields=%s body=%s",
                request.url.path, fields, sanitize_for_logging(body))
    return JSONResponse(
        {"error": ErrorCode.INVALID_INPUT.value, "message": "Invalid request data", "fields": fields},
        status_code=400,
    )


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(
        {"error": ErrorCode.INTERNAL_ERROR.value, "message": "Internal server error"},
        status_code=500,
    )


# ============================================================
# Routes
# ============================================================

@app.get("/healthz")
def healthz(services: Services = Depends(get_services)):
    return {"status": "ok", "env": services.settings.env}


@app.post("/api/otp/request")
def otp_request(body: OtpRequestBody, request: Request, services: Services = Depends(get_services)):
    services.otp.request_otp(body.email, client_ip(request))
    return {"ok": True}


@app.post("/api/otp/verify")
def otp_verify(body: OtpVerifyBody, services: Services = Depends(get_services)):
    token = services.otp.verify_otp(body.email, body.code)
    return {"ok": True, "token": token}


@app.post("/api/sign")
def sign(body: SignRequestBody, request: Request, services: Services = Depends(get_services)):
    user_agent = request.headers.get("user-agent") or "Unknown"
    result = services.signatures.submit(body.token, body.payload, client_ip(request), user_agent)
    return {
        "ok": True,
        "signatureId": result.signature_id,
        "auditHash": result.audit_hash,
        "receiptUrl": f"/api/files/receipt/{result.signature_id}",
        "verifyUrl": services.settings.audit_url(result.audit_hash),
        "receipt": result.receipt.value,
    }


@app.get("/api/verify")
def verify(audit: str = Query(..., min_length=1), services: Services = Depends(get_services)):
    found = services.verifier.verify(audit)
    if found is None:
        return JSONResponse({"valid": False, "message": "Signature not found or invalid"}, status_code=404)
    return {
        "valid": True,
        "message": "Signature verified successfully",
        "petition": {"title": found.petition_title, "version": found.petition_version},
        "signedAt": found.signed_at,
        "location": found.location,
    }


@app.get("/api/stats")
def stats(services: Services = Depends(get_services)):
    s = services.signatures.petition_stats()
    return {"count": s.count, "goal": s.goal, "recent": s.recent, "byState": s.by_state}


@app.get("/api/petition")
def petition(services: Services = Depends(get_services)):
    return services.signatures.public_petition()


@app.get("/api/files/receipt/{signature_id}")
def receipt(signature_id: str, services: Services = Depends(get_services)):
    record = services.signatures.receipt_for(signature_id)
    if record is None:
        raise NotFoundError("Receipt not found")
    return Response(
        content=record.receipt_pdf,
        media_type=record.receipt_mime or "application/pdf",
        headers={"Content-Disposition": f'inline; filename="receipt-{signature_id}.pdf"'},
    )


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(
        "petitionseal.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level=os.getenv("LOG_LEVEL", "info").lower()
    )
