"""
Database module for PetitionSeal.

Provides SQLite-based storage for petitions, OTP requests and signatures.
Each thread gets its own connection; single-writer guarantees come from the
schema (unique indexes) and conditional updates, never from in-process locks.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Union

DEFAULT_BUSY_TIMEOUT_SECONDS = 5.0

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS petitions (
        id TEXT PRIMARY KEY,
        slug TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        body_markdown TEXT NOT NULL,
        version TEXT NOT NULL,
        goal_count INTEGER NOT NULL DEFAULT 1000,
        is_live INTEGER NOT NULL DEFAULT 1,
        created_at INTEGER DEFAULT (strftime('%s', 'now'))
    );""",
    """
    CREATE TABLE IF NOT EXISTS otp_requests (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT NOT NULL,
        code_hash TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        expires_at INTEGER NOT NULL,
        consumed_at INTEGER,
        origin_ip TEXT NOT NULL
    );""",
    """
    CREATE INDEX IF NOT EXISTS idx_otp_requests_lookup
    ON otp_requests(email, consumed_at, expires_at);""",
    """
    CREATE INDEX IF NOT EXISTS idx_otp_requests_expires
    ON otp_requests(expires_at);""",
    """
    CREATE TABLE IF NOT EXISTS signatures (
        id TEXT PRIMARY KEY,
        petition_id TEXT NOT NULL REFERENCES petitions(id),
        first_name TEXT NOT NULL,
        last_name TEXT NOT NULL,
        email TEXT NOT NULL,
        city TEXT,
        state TEXT,
        zip TEXT,
        country TEXT,
        comment TEXT,
        consent INTEGER NOT NULL,
        method TEXT NOT NULL CHECK (method IN ('drawn', 'typed')),
        signature_image BLOB,
        typed_signature TEXT,
        petition_hash TEXT NOT NULL,
        signature_image_hash TEXT NOT NULL,
        audit_hash TEXT NOT NULL,
        ip TEXT NOT NULL,
        user_agent TEXT NOT NULL,
        email_verified_at TEXT NOT NULL,
        created_at TEXT NOT NULL,
        receipt_pdf BLOB,
        receipt_mime TEXT,
        CHECK (
            (method = 'drawn' AND signature_image IS NOT NULL AND typed_signature IS NULL)
            OR (method = 'typed' AND typed_signature IS NOT NULL AND signature_image IS NULL)
        )
    );""",
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_signatures_email_petition
    ON signatures(email, petition_id);""",
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_signatures_audit_hash
    ON signatures(audit_hash);""",
    """
    CREATE INDEX IF NOT EXISTS idx_signatures_petition_created
    ON signatures(petition_id, created_at);""",
)

TABLES = ("signatures", "otp_requests", "petitions")


class Database:
    """
    SQLite database with thread-local connections.

    Connections are reused within the same thread for performance.
    """

    def __init__(self, path: Union[str, Path], busy_timeout: float = DEFAULT_BUSY_TIMEOUT_SECONDS):
        self.path = Path(path)
        self._busy_timeout = busy_timeout
        self._local = threading.local()

    def connection(self) -> sqlite3.Connection:
        """Get the calling thread's connection, opening it on first use."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path), timeout=self._busy_timeout, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA foreign_keys=ON;")
            conn.execute("PRAGMA temp_store=MEMORY;")
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database transactions.
        Automatically commits on success, rolls back on failure.
        """
        conn = self.connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def init_schema(self) -> None:
        """
        Create tables and indexes.
        Safe to call multiple times (uses IF NOT EXISTS).
        """
        with self.transaction() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    def stats(self) -> Dict[str, int]:
        """Row counts per table for monitoring."""
        conn = self.connection()
        result = {}
        for table in TABLES:
            cur = conn.execute(f"SELECT COUNT(*) AS cnt FROM {table}")
            result[f"{table}_count"] = cur.fetchone()["cnt"]
        return result

    def reset(self) -> None:
        """
        Clear all tables but keep the schema (test isolation).
        """
        with self.transaction() as conn:
            for table in TABLES:
                conn.execute(f"DELETE FROM {table}")

    def close(self) -> None:
        """Close the calling thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
