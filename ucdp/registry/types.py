from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from .errors import InvalidAddress


ADDRESS_BYTES = 20
NAME_MAX_BYTES = 32

_HEX_ADDRESS = re.compile(r"^(0x)?([0-9a-fA-F]{40})$")


class Role(str, Enum):
    # One role per identity; UNREGISTERED is never persisted
    UNREGISTERED = "unregistered"
    USER = "user"
    PARTNER = "partner"


@dataclass(frozen=True)
class Identity:
    """
    One registered address.

    name is write-once. registered never goes back to False. enabled only
    carries meaning for partners and is always True for them at registration.
    """
    address: str
    role: Role
    name: str
    registered: bool = True
    enabled: bool = False
    registered_at: Optional[str] = None

    @property
    def is_user(self) -> bool:
        return self.registered and self.role == Role.USER

    @property
    def is_partner(self) -> bool:
        return self.registered and self.role == Role.PARTNER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "role": self.role.value,
            "name": self.name,
            "registered": self.registered,
            "enabled": self.enabled,
            "registered_at": self.registered_at,
        }


def normalize_address(value: Union[str, bytes, None]) -> str:
    """
    Canonical form of an identity key: lowercase, 0x-prefixed, 40 hex digits.

    Accepts raw 20-byte values or hex strings with or without the 0x prefix.
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != ADDRESS_BYTES:
            raise InvalidAddress(value)
        return "0x" + bytes(value).hex()

    if not isinstance(value, str):
        raise InvalidAddress(value)

    m = _HEX_ADDRESS.match(value.strip())
    if not m:
        raise InvalidAddress(value)
    return "0x" + m.group(2).lower()


def decode_name(raw: Union[str, bytes]) -> str:
    # Fixed-width names arrive NUL padded
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("utf-8", errors="replace")
    return raw.rstrip("\x00")


def name_fits(name: str) -> bool:
    return len(name.encode("utf-8")) <= NAME_MAX_BYTES
