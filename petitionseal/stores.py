"""
Storage collaborators for the signature pipeline.

Abstract interfaces for the petition, signature and OTP stores, with the
SQLite implementations used by the service. Implementations must be:
- Consistent (conditional update for OTP consumption, unique index for
  one signature per email and petition)
- Atomic per record (a signature row is written whole or not at all)
"""

import sqlite3
from abc import ABC, abstractmethod
from functools import wraps
from typing import Any, Dict, List, Optional

from .db import Database
from .errors import AlreadySignedError, StorageUnavailableError
from .models import (
    DrawnSignature,
    OtpRequest,
    Petition,
    SignatureRecord,
    SignerDetails,
    TypedSignature,
)


def storage_call(func):
    """Report an unreachable or locked database as a retryable dependency failure."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except sqlite3.OperationalError as e:
            raise StorageUnavailableError() from e
    return wrapper


# ============================================================
# Interfaces
# ============================================================

class PetitionStore(ABC):

    @abstractmethod
    def find_by_slug(self, slug: str) -> Optional[Petition]:
        pass

    @abstractmethod
    def find_by_id(self, petition_id: str) -> Optional[Petition]:
        pass

    @abstractmethod
    def first(self) -> Optional[Petition]:
        """The oldest petition (the site's main petition)."""
        pass

    @abstractmethod
    def insert(self, petition: Petition) -> Petition:
        pass


class SignatureStore(ABC):

    @abstractmethod
    def insert(self, record: SignatureRecord) -> SignatureRecord:
        """
        Insert a signature atomically.

        Raises:
            AlreadySignedError: If the email already signed this petition
        """
        pass

    @abstractmethod
    def find_by_audit_hash(self, audit_hash: str) -> Optional[SignatureRecord]:
        pass

    @abstractmethod
    def find_by_id(self, signature_id: str) -> Optional[SignatureRecord]:
        pass

    @abstractmethod
    def exists_for(self, email: str, petition_id: str) -> bool:
        pass

    @abstractmethod
    def attach_receipt(self, signature_id: str, receipt: bytes, mime: str) -> bool:
        """Store the receipt once. Returns False if one is already attached."""
        pass

    @abstractmethod
    def stats(self, petition_id: Optional[str] = None, recent_limit: int = 10) -> Dict[str, Any]:
        pass


class OtpStore(ABC):

    @abstractmethod
    def insert(self, request: OtpRequest) -> OtpRequest:
        pass

    @abstractmethod
    def find_latest_valid(self, email: str, now: int) -> Optional[OtpRequest]:
        """Most recently created request for ``email`` that is unconsumed and unexpired."""
        pass

    @abstractmethod
    def mark_consumed(self, otp_id: int, now: int) -> bool:
        """
        Consume a request.

        Returns:
            True if this call consumed it, False if it was already consumed
        """
        pass

    @abstractmethod
    def delete(self, otp_id: int) -> None:
        pass

    @abstractmethod
    def delete_expired(self, now: int) -> int:
        pass


# ============================================================
# SQLite implementations
# ============================================================

def _petition_from_row(row: sqlite3.Row) -> Petition:
    return Petition(
        id=row["id"],
        slug=row["slug"],
        title=row["title"],
        body_markdown=row["body_markdown"],
        version=row["version"],
        goal_count=row["goal_count"],
        is_live=bool(row["is_live"]),
    )


class SqlitePetitionStore(PetitionStore):

    def __init__(self, db: Database):
        self.db = db

    @storage_call
    def find_by_slug(self, slug: str) -> Optional[Petition]:
        row = self.db.connection().execute(
            "SELECT * FROM petitions WHERE slug=?", (slug,)
        ).fetchone()
        return _petition_from_row(row) if row else None

    @storage_call
    def find_by_id(self, petition_id: str) -> Optional[Petition]:
        row = self.db.connection().execute(
            "SELECT * FROM petitions WHERE id=?", (petition_id,)
        ).fetchone()
        return _petition_from_row(row) if row else None

    @storage_call
    def first(self) -> Optional[Petition]:
        row = self.db.connection().execute(
            "SELECT * FROM petitions ORDER BY created_at ASC, rowid ASC LIMIT 1"
        ).fetchone()
        return _petition_from_row(row) if row else None

    @storage_call
    def insert(self, petition: Petition) -> Petition:
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO petitions(id, slug, title, body_markdown, version, goal_count, is_live) "
                "VALUES(?,?,?,?,?,?,?)",
                (petition.id, petition.slug, petition.title, petition.body_markdown,
                 petition.version, petition.goal_count, int(petition.is_live))
            )
        return petition

    @storage_call
    def set_live(self, petition_id: str, is_live: bool) -> None:
        with self.db.transaction() as conn:
            conn.execute("UPDATE petitions SET is_live=? WHERE id=?", (int(is_live), petition_id))


def _signature_from_row(row: sqlite3.Row) -> SignatureRecord:
    if row["method"] == "drawn":
        mark = DrawnSignature(image=bytes(row["signature_image"]))
    else:
        mark = TypedSignature(text=row["typed_signature"])
    return SignatureRecord(
        id=row["id"],
        petition_id=row["petition_id"],
        signer=SignerDetails(
            first_name=row["first_name"],
            last_name=row["last_name"],
            email=row["email"],
            consent=bool(row["consent"]),
            city=row["city"],
            state=row["state"],
            zip=row["zip"],
            country=row["country"],
            comment=row["comment"],
        ),
        signature=mark,
        petition_hash=row["petition_hash"],
        signature_image_hash=row["signature_image_hash"],
        audit_hash=row["audit_hash"],
        ip=row["ip"],
        user_agent=row["user_agent"],
        email_verified_at=row["email_verified_at"],
        created_at=row["created_at"],
        receipt_pdf=bytes(row["receipt_pdf"]) if row["receipt_pdf"] is not None else None,
        receipt_mime=row["receipt_mime"],
    )


class SqliteSignatureStore(SignatureStore):

    def __init__(self, db: Database):
        self.db = db

    @storage_call
    def insert(self, record: SignatureRecord) -> SignatureRecord:
        s = record.signer
        image = record.signature.image if isinstance(record.signature, DrawnSignature) else None
        typed = record.signature.text if isinstance(record.signature, TypedSignature) else None
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    "INSERT INTO signatures(id, petition_id, first_name, last_name, email, city, state, "
                    "zip, country, comment, consent, method, signature_image, typed_signature, "
                    "petition_hash, signature_image_hash, audit_hash, ip, user_agent, "
                    "email_verified_at, created_at, receipt_pdf, receipt_mime) "
                    "VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
                    (record.id, record.petition_id, s.first_name, s.last_name, s.email, s.city,
                     s.state, s.zip, s.country, s.comment, int(s.consent), record.method,
                     image, typed, record.petition_hash, record.signature_image_hash,
                     record.audit_hash, record.ip, record.user_agent, record.email_verified_at,
                     record.created_at, record.receipt_pdf, record.receipt_mime)
                )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise AlreadySignedError() from e
            raise
        return record

    @storage_call
    def find_by_audit_hash(self, audit_hash: str) -> Optional[SignatureRecord]:
        row = self.db.connection().execute(
            "SELECT * FROM signatures WHERE audit_hash=?", (audit_hash,)
        ).fetchone()
        return _signature_from_row(row) if row else None

    @storage_call
    def find_by_id(self, signature_id: str) -> Optional[SignatureRecord]:
        row = self.db.connection().execute(
            "SELECT * FROM signatures WHERE id=?", (signature_id,)
        ).fetchone()
        return _signature_from_row(row) if row else None

    @storage_call
    def exists_for(self, email: str, petition_id: str) -> bool:
        row = self.db.connection().execute(
            "SELECT 1 FROM signatures WHERE email=? AND petition_id=?", (email, petition_id)
        ).fetchone()
        return row is not None

    @storage_call
    def attach_receipt(self, signature_id: str, receipt: bytes, mime: str) -> bool:
        with self.db.transaction() as conn:
            cur = conn.execute(
                "UPDATE signatures SET receipt_pdf=?, receipt_mime=? WHERE id=? AND receipt_pdf IS NULL",
                (receipt, mime, signature_id)
            )
            return cur.rowcount == 1

    @storage_call
    def stats(self, petition_id: Optional[str] = None, recent_limit: int = 10) -> Dict[str, Any]:
        conn = self.db.connection()
        where, params = ("WHERE petition_id=?", (petition_id,)) if petition_id else ("", ())

        count = conn.execute(f"SELECT COUNT(*) AS cnt FROM signatures {where}", params).fetchone()["cnt"]

        recent: List[Dict[str, Any]] = [
            dict(row) for row in conn.execute(
                f"SELECT first_name, last_name, state FROM signatures {where} "
                f"ORDER BY created_at DESC LIMIT ?",
                params + (recent_limit,)
            ).fetchall()
        ]

        state_filter = "AND state IS NOT NULL" if where else "WHERE state IS NOT NULL"
        by_state = {
            row["state"]: row["cnt"] for row in conn.execute(
                f"SELECT state, COUNT(*) AS cnt FROM signatures {where} {state_filter} GROUP BY state",
                params
            ).fetchall()
        }
        return {"count": count, "recent": recent, "by_state": by_state}


def _otp_from_row(row: sqlite3.Row) -> OtpRequest:
    return OtpRequest(
        id=row["id"],
        email=row["email"],
        code_hash=row["code_hash"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
        consumed_at=row["consumed_at"],
        origin_ip=row["origin_ip"],
    )


class SqliteOtpStore(OtpStore):

    def __init__(self, db: Database):
        self.db = db

    @storage_call
    def insert(self, request: OtpRequest) -> OtpRequest:
        with self.db.transaction() as conn:
            cur = conn.execute(
                "INSERT INTO otp_requests(email, code_hash, created_at, expires_at, consumed_at, origin_ip) "
                "VALUES(?,?,?,?,?,?)",
                (request.email, request.code_hash, request.created_at, request.expires_at,
                 request.consumed_at, request.origin_ip)
            )
            request.id = cur.lastrowid
        return request

    @storage_call
    def find_latest_valid(self, email: str, now: int) -> Optional[OtpRequest]:
        row = self.db.connection().execute(
            "SELECT * FROM otp_requests WHERE email=? AND consumed_at IS NULL AND expires_at > ? "
            "ORDER BY created_at DESC, id DESC LIMIT 1",
            (email, now)
        ).fetchone()
        return _otp_from_row(row) if row else None

    @storage_call
    def mark_consumed(self, otp_id: int, now: int) -> bool:
        """
        Atomic UPDATE with WHERE clause: of two concurrent callers for the
        same request, exactly one sees rowcount == 1.
        """
        with self.db.transaction() as conn:
            cur = conn.execute(
                "UPDATE otp_requests SET consumed_at=? WHERE id=? AND consumed_at IS NULL",
                (now, otp_id)
            )
            return cur.rowcount == 1

    @storage_call
    def delete(self, otp_id: int) -> None:
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM otp_requests WHERE id=?", (otp_id,))

    @storage_call
    def delete_expired(self, now: int) -> int:
        with self.db.transaction() as conn:
            cur = conn.execute("DELETE FROM otp_requests WHERE expires_at <= ?", (now,))
            return cur.rowcount
