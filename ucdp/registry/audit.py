from __future__ import annotations

import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Protocol, runtime_checkable

from . import db as rdb


@dataclass(frozen=True)
class AuditEntry:
    """One registry transition attempt, accepted or rejected."""
    action: str                 # e.g. "register_partner", "authorize_partner"
    actor: Optional[str]        # caller address
    subject: Optional[str]      # target address, when there is one
    outcome: str                # "ok" or an error code
    created_at: str = field(default_factory=rdb.utc_now_iso)
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "actor": self.actor,
            "subject": self.subject,
            "outcome": self.outcome,
            "created_at": self.created_at,
            "metadata": dict(self.metadata),
        }


@runtime_checkable
class AuditLog(Protocol):
    def record(self, entry: AuditEntry) -> None:
        ...

    def list(self, limit: int = 200) -> List[Dict[str, Any]]:
        ...


class InMemoryAuditLog:
    def __init__(self, max_entries: int = 1000) -> None:
        self._entries: Deque[AuditEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def record(self, entry: AuditEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def list(self, limit: int = 200) -> List[Dict[str, Any]]:
        with self._lock:
            newest_first = list(reversed(self._entries))
        return [e.to_dict() for e in newest_first[: max(0, int(limit))]]


class SqliteAuditLog:
    def __init__(self, database: rdb.RegistryDatabase) -> None:
        self.database = database

    def record(self, entry: AuditEntry) -> None:
        with self.database.transaction() as conn:
            rdb.insert_audit(
                conn,
                action=entry.action,
                actor=entry.actor,
                subject=entry.subject,
                outcome=entry.outcome,
                created_at=entry.created_at,
                metadata=entry.metadata,
                audit_id=entry.id,
            )

    def list(self, limit: int = 200) -> List[Dict[str, Any]]:
        with self.database.reading() as conn:
            return rdb.list_audit(conn, limit=int(limit))
