from __future__ import annotations

from typing import Any, Dict, Optional


class RegistryError(Exception):
    """
    Base for every rejected registry operation.

    code is stable and machine-readable; the message text is not part of the
    contract. status_code is what the HTTP layer answers with.
    """

    code = "REGISTRY_ERROR"
    status_code = 400

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class AlreadyRegistered(RegistryError):
    code = "ALREADY_REGISTERED"
    status_code = 409


class AlreadyRegisteredAsPartner(AlreadyRegistered):
    code = "ALREADY_REGISTERED_AS_PARTNER"


class AlreadyRegisteredAsUser(AlreadyRegistered):
    code = "ALREADY_REGISTERED_AS_USER"


class CallerNotUser(RegistryError):
    code = "CALLER_NOT_USER"
    status_code = 403


class PartnerNotRegistered(RegistryError):
    code = "PARTNER_NOT_REGISTERED"
    status_code = 404


class IdentityNotFound(RegistryError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidAddress(RegistryError):
    code = "INVALID_ADDRESS"
    status_code = 400

    def __init__(self, value: Optional[Any]) -> None:
        super().__init__(f"Invalid address: {value!r}", value=value)


class InvalidName(RegistryError):
    code = "INVALID_NAME"
    status_code = 400

    def __init__(self, name: str) -> None:
        super().__init__(f"Name must be at most 32 UTF-8 bytes: {name!r}", name=name)


class UnknownConnector(RegistryError):
    code = "UNKNOWN_CONNECTOR"
    status_code = 500

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"Unknown {kind} connector: {name}", kind=kind, name=name)
