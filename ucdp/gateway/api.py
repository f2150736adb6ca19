from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field


class Event(BaseModel):
    # Payload structure is opaque beyond the name; extra fields ride along
    model_config = ConfigDict(extra="allow")

    name: str = Field(..., min_length=1)


class PartnerRef(BaseModel):
    id: str


class UserRef(BaseModel):
    id: str


class EventsRequest(BaseModel):
    partner: PartnerRef
    user: UserRef
    events: List[Event]


class OkResponse(BaseModel):
    token: str


class ErrorResponse(BaseModel):
    error: str
