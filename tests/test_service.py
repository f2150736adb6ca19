from __future__ import annotations

import sqlite3
import threading

import pytest

from ucdp.config import Settings
from ucdp.registry.errors import (
    AlreadyRegistered,
    AlreadyRegisteredAsPartner,
    AlreadyRegisteredAsUser,
    CallerNotUser,
    IdentityNotFound,
    InvalidAddress,
    InvalidName,
    PartnerNotRegistered,
    UnknownConnector,
)
from ucdp.registry.service import build_registry
from ucdp.registry.types import Role

from tests.helpers import PARTNER, STRANGER, USER, addr


@pytest.fixture
def registered(service):
    service.register_partner(PARTNER, "acme")
    service.register_user(USER, "alice")
    return service


# ----------------------------
# Registration
# ----------------------------

def test_register_partner_then_user_fails_and_keeps_record(service):
    first = service.register_partner(PARTNER, "acme")
    with pytest.raises(AlreadyRegisteredAsPartner):
        service.register_user(PARTNER, "impostor")
    assert service.get_identity(PARTNER) == first
    assert service.get_partner(PARTNER).enabled is True


def test_register_user_then_partner_fails_and_keeps_record(service):
    first = service.register_user(USER, "alice")
    with pytest.raises(AlreadyRegisteredAsUser):
        service.register_partner(USER, "impostor")
    assert service.get_identity(USER) == first


def test_register_same_role_twice_fails(service):
    service.register_partner(PARTNER, "acme")
    with pytest.raises(AlreadyRegisteredAsPartner):
        service.register_partner(PARTNER, "not a new partner")
    assert service.get_partner(PARTNER).name == "acme"


def test_register_accepts_raw_bytes_and_padded_names(service):
    raw = bytes.fromhex(PARTNER[2:])
    partner = service.register_partner(raw, b"partner" + b"\x00" * 25)
    assert partner.address == PARTNER
    assert partner.name == "partner"


def test_register_malformed_address(service):
    with pytest.raises(InvalidAddress):
        service.register_user("0x1234", "alice")


def test_lookups_by_role(registered):
    assert registered.get_user(USER).name == "alice"
    with pytest.raises(IdentityNotFound):
        registered.get_user(PARTNER)
    with pytest.raises(IdentityNotFound):
        registered.get_partner(STRANGER)
    assert registered.get_identity(STRANGER) is None


# ----------------------------
# Authorization transitions
# ----------------------------

def test_authorize_then_unauthorize_scenario(registered):
    assert registered.is_authorized(USER, PARTNER) is False
    assert registered.authorize_partner(USER, PARTNER) is True
    assert registered.is_authorized(USER, PARTNER) is True
    assert registered.unauthorize_partner(USER, PARTNER) is False
    assert registered.is_authorized(USER, PARTNER) is False


def test_authorize_is_idempotent(registered):
    registered.authorize_partner(USER, PARTNER)
    registered.authorize_partner(USER, PARTNER)
    assert registered.is_authorized(USER, PARTNER) is True
    assert registered.authorized_partners(USER) == [PARTNER]


def test_unauthorize_never_authorized_pair_is_not_an_error(registered):
    registered.unauthorize_partner(USER, PARTNER)
    assert registered.is_authorized(USER, PARTNER) is False


def test_unregistered_caller_is_rejected_even_for_valid_partner(registered):
    with pytest.raises(CallerNotUser):
        registered.authorize_partner(STRANGER, PARTNER)
    with pytest.raises(CallerNotUser):
        registered.unauthorize_partner(STRANGER, PARTNER)
    assert registered.is_authorized(STRANGER, PARTNER) is False


def test_caller_check_precedes_partner_check(service):
    # Neither side registered: the caller error wins
    with pytest.raises(CallerNotUser):
        service.authorize_partner(STRANGER, addr(0xDEAD))


def test_partner_cannot_act_as_user(registered):
    other = addr(0xABC)
    registered.register_partner(other, "other")
    with pytest.raises(CallerNotUser):
        registered.authorize_partner(PARTNER, other)


def test_unregistered_target_is_rejected_for_valid_user(registered):
    with pytest.raises(PartnerNotRegistered):
        registered.authorize_partner(USER, STRANGER)
    with pytest.raises(PartnerNotRegistered):
        registered.unauthorize_partner(USER, STRANGER)
    assert registered.authorized_partners(USER) == []


def test_user_target_is_not_a_partner(registered):
    other_user = addr(0xBEEF)
    registered.register_user(other_user, "bob")
    with pytest.raises(PartnerNotRegistered):
        registered.authorize_partner(USER, other_user)


def test_is_authorized_is_per_pair(registered):
    second = addr(0x321)
    registered.register_partner(second, "globex")
    registered.authorize_partner(USER, PARTNER)
    assert registered.is_authorized(USER, second) is False
    assert registered.is_authorized(PARTNER, USER) is False


def test_is_authorized_for_unknown_identities_is_false(service):
    assert service.is_authorized(STRANGER, addr(0xDEAD)) is False


# ----------------------------
# Audit + stats
# ----------------------------

def test_transitions_are_audited(registered):
    with pytest.raises(CallerNotUser):
        registered.authorize_partner(STRANGER, PARTNER)
    registered.authorize_partner(USER, PARTNER)

    entries = registered.audit.list(limit=10)
    assert [e["action"] for e in entries[:2]] == ["authorize_partner", "authorize_partner"]
    assert entries[0]["outcome"] == "ok"
    assert entries[0]["metadata"] == {"authorized": True}
    assert entries[1]["outcome"] == "CALLER_NOT_USER"
    assert entries[1]["actor"] == STRANGER


def test_stats_counts_roles(registered, settings):
    stats = registered.stats()
    assert stats["users"] == 1
    assert stats["partners"] == 1
    assert stats["connector"] == settings.registry_connector


def test_overlong_name_is_rejected_before_storage(service):
    with pytest.raises(InvalidName):
        service.register_user(USER, "x" * 100)
    assert service.get_identity(USER) is None
    assert service.stats()["users"] == 0
    assert service.audit.list(limit=1)[0]["outcome"] == "INVALID_NAME"

    # 32 bytes exactly still fits; a multibyte name is measured in bytes
    assert service.register_user(USER, "x" * 32).name == "x" * 32
    with pytest.raises(InvalidName):
        service.register_partner(PARTNER, "\u00e9" * 17)
    assert service.get_identity(PARTNER) is None


def test_failing_audit_write_does_not_mask_outcome(registered, monkeypatch):
    def broken(entry):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(registered.audit, "record", broken)

    assert registered.authorize_partner(USER, PARTNER) is True
    assert registered.is_authorized(USER, PARTNER) is True

    with pytest.raises(CallerNotUser):
        registered.authorize_partner(STRANGER, PARTNER)

    assert registered.register_user(addr(42), "bob").is_user


def test_unknown_connector():
    with pytest.raises(UnknownConnector):
        build_registry(Settings(registry_connector="aerospike"))


# ----------------------------
# Concurrency
# ----------------------------

def _race(n, target):
    barrier = threading.Barrier(n)
    results = []
    lock = threading.Lock()

    def run(i):
        barrier.wait()
        try:
            target(i)
            outcome = "ok"
        except AlreadyRegistered as exc:
            outcome = exc.code
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=run, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_concurrent_registration_exactly_one_wins(service):
    def register(i):
        if i % 2:
            service.register_partner(PARTNER, f"p{i}")
        else:
            service.register_user(PARTNER, f"u{i}")

    results = _race(16, register)
    assert results.count("ok") == 1
    assert len(results) == 16

    identity = service.get_identity(PARTNER)
    assert identity is not None
    expected_error = "ALREADY_REGISTERED_AS_PARTNER" if identity.role == Role.PARTNER else "ALREADY_REGISTERED_AS_USER"
    assert results.count(expected_error) == 15


def test_concurrent_registration_of_disjoint_identities(service):
    _race(20, lambda i: service.register_user(addr(1000 + i), f"user{i}"))
    assert service.stats()["users"] == 20
