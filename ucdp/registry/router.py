from __future__ import annotations

"""
registry/router.py

Registry API surface.

- The acting address comes from the X-UCDP-CALLER header.
- Registry errors propagate as exceptions and are rendered by the handler
  installed in main.py ({"error": code, "message": ...}).
- Audit listing is admin-gated by main.py dependencies.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field, field_validator

from .service import RegistryService
from .types import NAME_MAX_BYTES, name_fits, normalize_address


def _service_from_request(request: Request) -> RegistryService:
    # main.py sets app.state.registry
    return request.app.state.registry


def _require_caller(x_ucdp_caller: Optional[str]) -> str:
    caller = (x_ucdp_caller or "").strip()
    if not caller:
        raise HTTPException(status_code=400, detail="X-UCDP-CALLER header is required")
    return caller


# ----------------------------
# Models
# ----------------------------

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, description=f"Display name, at most {NAME_MAX_BYTES} UTF-8 bytes")

    @field_validator("name")
    @classmethod
    def _name_fits(cls, v: str) -> str:
        if not name_fits(v):
            raise ValueError(f"name must be at most {NAME_MAX_BYTES} bytes")
        return v


class IdentityResponse(BaseModel):
    address: str
    role: str
    name: str
    registered: bool
    enabled: bool
    registered_at: Optional[str] = None


class AuthorizationResponse(BaseModel):
    user: str
    partner: str
    authorized: bool


registry_router = APIRouter(prefix="/registry", tags=["registry"])
audit_router = APIRouter(prefix="/audit", tags=["audit"])


# ----------------------------
# Registration
# ----------------------------

@registry_router.post("/partners", status_code=201, response_model=IdentityResponse)
def register_partner(
    request: Request,
    body: RegisterRequest,
    x_ucdp_caller: Optional[str] = Header(default=None, alias="X-UCDP-CALLER"),
) -> Dict[str, Any]:
    identity = _service_from_request(request).register_partner(_require_caller(x_ucdp_caller), body.name)
    return identity.to_dict()


@registry_router.post("/users", status_code=201, response_model=IdentityResponse)
def register_user(
    request: Request,
    body: RegisterRequest,
    x_ucdp_caller: Optional[str] = Header(default=None, alias="X-UCDP-CALLER"),
) -> Dict[str, Any]:
    identity = _service_from_request(request).register_user(_require_caller(x_ucdp_caller), body.name)
    return identity.to_dict()


# ----------------------------
# Lookups
# ----------------------------

@registry_router.get("/identities/{address}", response_model=IdentityResponse)
def get_identity(request: Request, address: str) -> Dict[str, Any]:
    identity = _service_from_request(request).get_identity(address)
    if identity is None:
        raise HTTPException(status_code=404, detail="Identity not found")
    return identity.to_dict()


@registry_router.get("/partners/{address}", response_model=IdentityResponse)
def get_partner(request: Request, address: str) -> Dict[str, Any]:
    return _service_from_request(request).get_partner(address).to_dict()


@registry_router.get("/users/{address}", response_model=IdentityResponse)
def get_user(request: Request, address: str) -> Dict[str, Any]:
    return _service_from_request(request).get_user(address).to_dict()


@registry_router.get("/users/{address}/partners")
def list_authorized_partners(request: Request, address: str) -> Dict[str, Any]:
    service = _service_from_request(request)
    user = service.get_user(address)
    items = service.authorized_partners(user.address)
    return {"user": user.address, "items": items, "meta": {"count": len(items)}}


# ----------------------------
# Authorizations
# ----------------------------

@registry_router.put("/authorizations/{partner}", response_model=AuthorizationResponse)
def authorize_partner(
    request: Request,
    partner: str,
    x_ucdp_caller: Optional[str] = Header(default=None, alias="X-UCDP-CALLER"),
) -> Dict[str, Any]:
    service = _service_from_request(request)
    caller = _require_caller(x_ucdp_caller)
    authorized = service.authorize_partner(caller, partner)
    return _edge(caller, partner, authorized)


@registry_router.delete("/authorizations/{partner}", response_model=AuthorizationResponse)
def unauthorize_partner(
    request: Request,
    partner: str,
    x_ucdp_caller: Optional[str] = Header(default=None, alias="X-UCDP-CALLER"),
) -> Dict[str, Any]:
    service = _service_from_request(request)
    caller = _require_caller(x_ucdp_caller)
    authorized = service.unauthorize_partner(caller, partner)
    return _edge(caller, partner, authorized)


@registry_router.get("/authorizations/{user}/{partner}", response_model=AuthorizationResponse)
def get_authorization(request: Request, user: str, partner: str) -> Dict[str, Any]:
    return _authorization(_service_from_request(request), user, partner)


def _authorization(service: RegistryService, user: str, partner: str) -> Dict[str, Any]:
    return _edge(user, partner, service.is_authorized(user, partner))


def _edge(user: str, partner: str, authorized: bool) -> Dict[str, Any]:
    return {"user": normalize_address(user), "partner": normalize_address(partner), "authorized": authorized}


# ----------------------------
# Audit (read-only)
# ----------------------------

@audit_router.get("/registry")
def audit_registry(request: Request, limit: int = Query(default=200, ge=1, le=1000)) -> Dict[str, Any]:
    items = _service_from_request(request).audit.list(limit=int(limit))
    return {"items": items, "meta": {"count": len(items), "limit": int(limit)}}
