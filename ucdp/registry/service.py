from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from ..config import Settings
from . import db as rdb
from .audit import AuditEntry, AuditLog, InMemoryAuditLog, SqliteAuditLog
from .errors import (
    CallerNotUser,
    InvalidName,
    PartnerNotRegistered,
    RegistryError,
    UnknownConnector,
)
from .locks import KeyedLocks
from .store import (
    AuthorizationTable,
    IdentityStore,
    InMemoryAuthorizationTable,
    InMemoryIdentityStore,
    SqliteAuthorizationTable,
    SqliteIdentityStore,
)
from .types import Identity, Role, decode_name, name_fits, normalize_address


logger = logging.getLogger("ucdp.registry")

Address = Union[str, bytes]


class RegistryService:
    """
    Registration and authorization state machine.

    Every mutation runs under the per-identity lock of the acting address and
    either completes fully or raises before touching storage. Reads take no
    registry lock; the stores hand back whole records only.
    """

    def __init__(
        self,
        identities: IdentityStore,
        authorizations: AuthorizationTable,
        audit: Optional[AuditLog] = None,
        locks: Optional[KeyedLocks] = None,
        connector: str = "memory",
    ) -> None:
        self.identities = identities
        self.authorizations = authorizations
        self.audit = audit if audit is not None else InMemoryAuditLog()
        self.locks = locks if locks is not None else KeyedLocks()
        self.connector = connector

    # ----------------------------
    # Registration
    # ----------------------------

    def register_partner(self, caller: Address, name: Union[str, bytes]) -> Identity:
        return self._register(Role.PARTNER, "register_partner", caller, name)

    def register_user(self, caller: Address, name: Union[str, bytes]) -> Identity:
        return self._register(Role.USER, "register_user", caller, name)

    def _register(self, role: Role, action: str, caller: Address, name: Union[str, bytes]) -> Identity:
        address = normalize_address(caller)
        label = decode_name(name)
        with self.locks.hold(address):
            try:
                if not name_fits(label):
                    raise InvalidName(label)
                identity = self.identities.register_as(role, address, label)
            except RegistryError as exc:
                self._rejected(action, address, None, exc)
                raise
        self._accepted(action, address, None, {"name": label})
        logger.info("registered %s %s (%s)", role.value, address, label)
        return identity

    # ----------------------------
    # Authorization transitions
    # ----------------------------

    def authorize_partner(self, caller: Address, partner: Address) -> bool:
        return self._set_authorization("authorize_partner", caller, partner, True)

    def unauthorize_partner(self, caller: Address, partner: Address) -> bool:
        return self._set_authorization("unauthorize_partner", caller, partner, False)

    def _set_authorization(self, action: str, caller: Address, partner: Address, value: bool) -> bool:
        user_address, partner_address = normalize_address(caller), normalize_address(partner)
        # The edge belongs to the user; locking the user alone serializes it
        with self.locks.hold(user_address):
            try:
                self._require_user(user_address)
                self._require_enabled_partner(partner_address)
            except RegistryError as exc:
                self._rejected(action, user_address, partner_address, exc)
                raise
            self.authorizations.set_authorization(user_address, partner_address, value)
        self._accepted(action, user_address, partner_address, {"authorized": value})
        logger.info("%s: user %s partner %s", action, user_address, partner_address)
        return value

    def _require_user(self, address: str) -> Identity:
        # Caller role is checked before the target's
        identity = self.identities.find(address)
        if identity is None or not identity.is_user:
            raise CallerNotUser("Sender not registered as a User", address=address)
        return identity

    def _require_enabled_partner(self, address: str) -> Identity:
        identity = self.identities.find(address)
        if identity is None or not identity.is_partner or not identity.enabled:
            raise PartnerNotRegistered("Partner not registered", address=address)
        return identity

    # ----------------------------
    # Queries
    # ----------------------------

    def is_authorized(self, user: Address, partner: Address) -> bool:
        """Stored edge value; False for any pair never authorized."""
        return self.authorizations.get(normalize_address(user), normalize_address(partner))

    def get_identity(self, address: Address) -> Optional[Identity]:
        return self.identities.find(normalize_address(address))

    def get_partner(self, address: Address) -> Identity:
        return self.identities.lookup(Role.PARTNER, normalize_address(address))

    def get_user(self, address: Address) -> Identity:
        return self.identities.lookup(Role.USER, normalize_address(address))

    def authorized_partners(self, user: Address) -> List[str]:
        return self.authorizations.authorized_partners(normalize_address(user))

    def stats(self) -> Dict[str, Any]:
        return {
            "connector": self.connector,
            "users": self.identities.count(Role.USER),
            "partners": self.identities.count(Role.PARTNER),
            "lock_shards": self.locks.shards,
        }

    # ----------------------------
    # Audit helpers
    # ----------------------------

    def _accepted(self, action: str, actor: str, subject: Optional[str], metadata: Dict[str, Any]) -> None:
        self._record(AuditEntry(action=action, actor=actor, subject=subject, outcome="ok", metadata=metadata))

    def _rejected(self, action: str, actor: str, subject: Optional[str], exc: RegistryError) -> None:
        logger.warning("%s rejected for %s: %s", action, actor, exc.code)
        self._record(
            AuditEntry(action=action, actor=actor, subject=subject, outcome=exc.code, metadata={"message": exc.message})
        )

    def _record(self, entry: AuditEntry) -> None:
        # Audit failures never replace the transition result or its RegistryError
        try:
            self.audit.record(entry)
        except Exception:  # noqa: BLE001
            logger.exception("audit write failed for %s by %s (%s)", entry.action, entry.actor, entry.outcome)


def build_stores(settings: Settings) -> Tuple[IdentityStore, AuthorizationTable, AuditLog]:
    connector = settings.registry_connector
    if connector == "memory":
        return (
            InMemoryIdentityStore(),
            InMemoryAuthorizationTable(),
            InMemoryAuditLog(max_entries=settings.audit_max_entries),
        )
    if connector == "sqlite":
        database = rdb.RegistryDatabase(settings.db_path)
        return (
            SqliteIdentityStore(database),
            SqliteAuthorizationTable(database),
            SqliteAuditLog(database),
        )
    raise UnknownConnector("registry", connector)


def build_registry(settings: Settings) -> RegistryService:
    identities, authorizations, audit = build_stores(settings)
    logger.info("registry connector: %s", settings.registry_connector)
    return RegistryService(
        identities,
        authorizations,
        audit=audit,
        locks=KeyedLocks(settings.lock_shards),
        connector=settings.registry_connector,
    )
