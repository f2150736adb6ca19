from __future__ import annotations

import sqlite3
import threading
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable

from . import db as rdb
from .errors import (
    AlreadyRegistered,
    AlreadyRegisteredAsPartner,
    AlreadyRegisteredAsUser,
    IdentityNotFound,
)
from .types import Identity, Role


def already_registered(existing: Identity) -> AlreadyRegistered:
    """The error names the role the address already holds."""
    if existing.role == Role.PARTNER:
        return AlreadyRegisteredAsPartner(
            "Sender already registered as a Partner", address=existing.address
        )
    return AlreadyRegisteredAsUser(
        "Sender already registered as a User", address=existing.address
    )


def _not_found(role: Role, address: str) -> IdentityNotFound:
    return IdentityNotFound(f"No {role.value} registered at {address}", address=address, role=role.value)


# ----------------------------
# Contracts
# ----------------------------

@runtime_checkable
class IdentityStore(Protocol):
    """
    Registered users and partners. Addresses are already canonical here.
    No update or delete operation exists.
    """

    def register_as(self, role: Role, address: str, name: str) -> Identity:
        ...

    def lookup(self, role: Role, address: str) -> Identity:
        ...

    def find(self, address: str) -> Optional[Identity]:
        ...

    def count(self, role: Role) -> int:
        ...


@runtime_checkable
class AuthorizationTable(Protocol):
    """
    Sparse (user, partner) -> bool relation. An absent pair reads as False.
    Pure storage: callers validate identities first.
    """

    def set_authorization(self, user: str, partner: str, value: bool) -> None:
        ...

    def get(self, user: str, partner: str) -> bool:
        ...

    def authorized_partners(self, user: str) -> List[str]:
        ...


# ----------------------------
# In-memory
# ----------------------------

class InMemoryIdentityStore:
    def __init__(self) -> None:
        self._identities: Dict[str, Identity] = {}
        self._lock = threading.Lock()

    def register_as(self, role: Role, address: str, name: str) -> Identity:
        if role == Role.UNREGISTERED:
            raise ValueError("cannot register with role 'unregistered'")
        with self._lock:
            existing = self._identities.get(address)
            if existing is not None:
                raise already_registered(existing)
            identity = Identity(
                address=address,
                role=role,
                name=name,
                registered=True,
                enabled=(role == Role.PARTNER),
                registered_at=rdb.utc_now_iso(),
            )
            self._identities[address] = identity
            return identity

    def lookup(self, role: Role, address: str) -> Identity:
        identity = self.find(address)
        if identity is None or identity.role != role:
            raise _not_found(role, address)
        return identity

    def find(self, address: str) -> Optional[Identity]:
        with self._lock:
            return self._identities.get(address)

    def count(self, role: Role) -> int:
        with self._lock:
            return sum(1 for i in self._identities.values() if i.role == role)


class InMemoryAuthorizationTable:
    def __init__(self) -> None:
        self._edges: Dict[Tuple[str, str], bool] = {}
        self._lock = threading.Lock()

    def set_authorization(self, user: str, partner: str, value: bool) -> None:
        with self._lock:
            self._edges[(user, partner)] = bool(value)

    def get(self, user: str, partner: str) -> bool:
        with self._lock:
            return self._edges.get((user, partner), False)

    def authorized_partners(self, user: str) -> List[str]:
        with self._lock:
            return sorted(p for (u, p), v in self._edges.items() if u == user and v)


# ----------------------------
# SQLite
# ----------------------------

def _identity_from_row(row: sqlite3.Row) -> Identity:
    return Identity(
        address=str(row["address"]),
        role=Role(str(row["role"])),
        name=str(row["name"]),
        registered=bool(row["registered"]),
        enabled=bool(row["enabled"]),
        registered_at=row["registered_at"],
    )


class SqliteIdentityStore:
    def __init__(self, database: rdb.RegistryDatabase) -> None:
        self.database = database

    def register_as(self, role: Role, address: str, name: str) -> Identity:
        if role == Role.UNREGISTERED:
            raise ValueError("cannot register with role 'unregistered'")
        identity = Identity(
            address=address,
            role=role,
            name=name,
            registered=True,
            enabled=(role == Role.PARTNER),
            registered_at=rdb.utc_now_iso(),
        )
        with self.database.transaction() as conn:
            row = rdb.get_identity_row(conn, address)
            if row is not None:
                raise already_registered(_identity_from_row(row))
            rdb.insert_identity(
                conn,
                address=address,
                role=role.value,
                name=name,
                enabled=identity.enabled,
                registered_at=identity.registered_at or "",
            )
        return identity

    def lookup(self, role: Role, address: str) -> Identity:
        identity = self.find(address)
        if identity is None or identity.role != role:
            raise _not_found(role, address)
        return identity

    def find(self, address: str) -> Optional[Identity]:
        with self.database.reading() as conn:
            row = rdb.get_identity_row(conn, address)
        return _identity_from_row(row) if row is not None else None

    def count(self, role: Role) -> int:
        with self.database.reading() as conn:
            return rdb.count_identities(conn, role.value)


class SqliteAuthorizationTable:
    def __init__(self, database: rdb.RegistryDatabase) -> None:
        self.database = database

    def set_authorization(self, user: str, partner: str, value: bool) -> None:
        with self.database.transaction() as conn:
            rdb.upsert_authorization(conn, user, partner, value)

    def get(self, user: str, partner: str) -> bool:
        with self.database.reading() as conn:
            return rdb.get_authorization(conn, user, partner)

    def authorized_partners(self, user: str) -> List[str]:
        with self.database.reading() as conn:
            return rdb.list_authorized_partners(conn, user)
