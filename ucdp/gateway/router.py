from __future__ import annotations

import logging
import uuid
from typing import Union

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..registry.errors import InvalidAddress
from ..registry.service import RegistryService
from ..registry.types import normalize_address
from .api import ErrorResponse, EventsRequest, OkResponse
from .partners import PartnerDirectory
from .stream import EventBatch, StreamDispatcher


logger = logging.getLogger("ucdp.gateway")

router = APIRouter(prefix="/v1", tags=["events"])


def _reject(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


@router.post(
    "/events",
    response_model=OkResponse,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
def ingest_events(body: EventsRequest, request: Request) -> Union[OkResponse, JSONResponse]:
    """
    Admit a batch for (partner, user) when the user has authorized the partner.

    Read-only against the registry. A rejection never carries a token.
    """
    state = request.app.state
    registry: RegistryService = state.registry
    partners: PartnerDirectory = state.partners
    dispatcher: StreamDispatcher = state.dispatcher
    max_batch: int = state.settings.events_max_batch

    if len(body.events) == 0:
        return _reject(400, "Events array must not be empty.")
    if len(body.events) > max_batch:
        return _reject(400, f"Events array must not be larger than {max_batch} events.")

    try:
        partner_id = normalize_address(body.partner.id)
        user_id = normalize_address(body.user.id)
    except InvalidAddress as exc:
        return _reject(400, exc.message)

    partner = partners.get_partner(partner_id)
    if partner is None or not partner.enabled:
        logger.warning("rejected batch: partner %s not registered", partner_id)
        return _reject(403, "Partner not registered.")

    if not registry.is_authorized(user_id, partner_id):
        logger.warning("rejected batch: user %s has not authorized partner %s", user_id, partner_id)
        return _reject(403, "Partner not authorized by user.")

    token = str(uuid.uuid4())
    dispatcher.submit(
        EventBatch(
            token=token,
            partner=partner_id,
            user=user_id,
            events=[e.model_dump() for e in body.events],
        )
    )
    logger.info("accepted batch %s: %d events partner %s user %s", token, len(body.events), partner_id, user_id)
    return OkResponse(token=token)
