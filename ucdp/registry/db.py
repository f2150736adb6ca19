from __future__ import annotations

"""
registry/db.py

Registry SQLite substrate.

- Tables are created non-destructively (CREATE TABLE IF NOT EXISTS).
- identities holds exactly one row per address; the role column makes the
  user and partner sets disjoint at the schema level.
- authorizations is sparse: a missing row means "not authorized".
- audit_log is append-only.
"""

import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional


# ----------------------------
# Time helpers
# ----------------------------

def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ----------------------------
# Connection + schema
# ----------------------------

def connect(db_path: str) -> sqlite3.Connection:
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    # One shared connection, access serialized by RegistryDatabase.lock
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.execute("PRAGMA foreign_keys = ON")
    conn.row_factory = sqlite3.Row
    ensure_schema(conn)
    return conn


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Create registry tables if missing (non-destructive)."""
    cur = conn.cursor()

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS identities (
            address TEXT PRIMARY KEY,
            role TEXT NOT NULL CHECK (role IN ('user','partner')),
            name TEXT NOT NULL,
            registered INTEGER NOT NULL DEFAULT 1 CHECK (registered = 1),
            enabled INTEGER NOT NULL DEFAULT 0 CHECK (enabled IN (0,1)),
            registered_at TEXT NOT NULL
        )
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_identities_role ON identities (role)")

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS authorizations (
            user_address TEXT NOT NULL,
            partner_address TEXT NOT NULL,
            authorized INTEGER NOT NULL CHECK (authorized IN (0,1)),
            updated_at TEXT NOT NULL,
            PRIMARY KEY (user_address, partner_address)
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS audit_log (
            id TEXT PRIMARY KEY,
            action TEXT NOT NULL,
            actor TEXT NULL,
            subject TEXT NULL,
            outcome TEXT NOT NULL,
            created_at TEXT NOT NULL,
            metadata_json TEXT NOT NULL DEFAULT '{}'
        )
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_audit_created_at ON audit_log (created_at)")

    conn.commit()


class RegistryDatabase:
    """Owns the shared connection and the lock that serializes access to it."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self.conn = connect(db_path)
        self.lock = threading.Lock()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self.lock:
            try:
                yield self.conn
                self.conn.commit()
            except BaseException:
                self.conn.rollback()
                raise

    @contextmanager
    def reading(self) -> Iterator[sqlite3.Connection]:
        with self.lock:
            yield self.conn

    def ping(self) -> bool:
        try:
            with self.reading() as conn:
                conn.execute("SELECT 1")
            return True
        except sqlite3.Error:
            return False

    def close(self) -> None:
        with self.lock:
            self.conn.close()


# ----------------------------
# Identity rows
# ----------------------------

def get_identity_row(conn: sqlite3.Connection, address: str) -> Optional[sqlite3.Row]:
    return conn.execute(
        """
        SELECT address, role, name, registered, enabled, registered_at
        FROM identities
        WHERE address = ?
        LIMIT 1
        """,
        (address,),
    ).fetchone()


def insert_identity(
    conn: sqlite3.Connection,
    *,
    address: str,
    role: str,
    name: str,
    enabled: bool,
    registered_at: str,
) -> None:
    conn.execute(
        """
        INSERT INTO identities (address, role, name, registered, enabled, registered_at)
        VALUES (?, ?, ?, 1, ?, ?)
        """,
        (address, role, name, 1 if enabled else 0, registered_at),
    )


def count_identities(conn: sqlite3.Connection, role: str) -> int:
    row = conn.execute("SELECT COUNT(*) AS n FROM identities WHERE role = ?", (role,)).fetchone()
    return int(row["n"]) if row else 0


# ----------------------------
# Authorization rows
# ----------------------------

def upsert_authorization(conn: sqlite3.Connection, user: str, partner: str, value: bool) -> None:
    conn.execute(
        """
        INSERT INTO authorizations (user_address, partner_address, authorized, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT (user_address, partner_address)
        DO UPDATE SET authorized = excluded.authorized, updated_at = excluded.updated_at
        """,
        (user, partner, 1 if value else 0, utc_now_iso()),
    )


def get_authorization(conn: sqlite3.Connection, user: str, partner: str) -> bool:
    row = conn.execute(
        """
        SELECT authorized
        FROM authorizations
        WHERE user_address = ? AND partner_address = ?
        LIMIT 1
        """,
        (user, partner),
    ).fetchone()
    return bool(row and int(row["authorized"]) == 1)


def list_authorized_partners(conn: sqlite3.Connection, user: str) -> List[str]:
    rows = conn.execute(
        """
        SELECT partner_address
        FROM authorizations
        WHERE user_address = ? AND authorized = 1
        ORDER BY partner_address
        """,
        (user,),
    ).fetchall()
    return [str(r["partner_address"]) for r in rows]


# ----------------------------
# Audit
# ----------------------------

def insert_audit(
    conn: sqlite3.Connection,
    *,
    action: str,
    actor: Optional[str],
    subject: Optional[str],
    outcome: str,
    created_at: str,
    metadata: Optional[Dict[str, Any]] = None,
    audit_id: Optional[str] = None,
) -> str:
    aid = audit_id or str(uuid.uuid4())
    conn.execute(
        """
        INSERT INTO audit_log (id, action, actor, subject, outcome, created_at, metadata_json)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (aid, action, actor, subject, outcome, created_at, json.dumps(metadata or {}, ensure_ascii=False)),
    )
    return aid


def list_audit(conn: sqlite3.Connection, *, limit: int = 200) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT id, action, actor, subject, outcome, created_at, metadata_json
        FROM audit_log
        ORDER BY created_at DESC, rowid DESC
        LIMIT ?
        """,
        (int(limit),),
    ).fetchall()
    out: List[Dict[str, Any]] = []
    for r in rows:
        item = dict(r)
        try:
            item["metadata"] = json.loads(item.pop("metadata_json") or "{}")
        except ValueError:
            item["metadata"] = {}
        out.append(item)
    return out
