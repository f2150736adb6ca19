"""Consent registry package.

Contract:
- An identity is registered once, as a user or as a partner, never both.
- Only a registered user may authorize or unauthorize a partner, and only a
  registered, enabled partner may be the target.
- Authorization edges default to False and are toggled, never deleted.
"""
from __future__ import annotations

from .errors import (
    AlreadyRegistered,
    AlreadyRegisteredAsPartner,
    AlreadyRegisteredAsUser,
    CallerNotUser,
    IdentityNotFound,
    InvalidAddress,
    InvalidName,
    PartnerNotRegistered,
    RegistryError,
    UnknownConnector,
)
from .service import RegistryService, build_registry
from .types import Identity, Role, normalize_address

__all__ = [
    "AlreadyRegistered",
    "AlreadyRegisteredAsPartner",
    "AlreadyRegisteredAsUser",
    "CallerNotUser",
    "Identity",
    "IdentityNotFound",
    "InvalidAddress",
    "InvalidName",
    "PartnerNotRegistered",
    "RegistryError",
    "RegistryService",
    "Role",
    "UnknownConnector",
    "build_registry",
    "normalize_address",
]
