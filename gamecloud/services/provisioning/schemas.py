"""API request/response schemas for server provisioning endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class ServerRequest(BaseModel):
    """Server provisioning payload.

    Fields are untyped here. Type and domain checks are done by the service so
    every offending field is reported together.
    """

    user_id: Any = None
    game: Any = None
    region: Any = None
    tier: Any = None


class ServerView(BaseModel):
    server_id: str
    user_id: str
    game: str
    region: str
    tier: int
    status: str
    created_at: datetime | None = None


class PaymentView(BaseModel):
    payment_id: str
    payment_intent_ref: str | None
    amount_cents: int
    currency: str
    status: str


class ServerCreatedResponse(BaseModel):
    """Response for `POST /servers`."""

    server: ServerView
    payment: PaymentView
    client_token: str


class TransitionView(BaseModel):
    from_status: str | None
    to_status: str
    reason: str
    event_id: str | None


class ServerSnapshotResponse(BaseModel):
    """On-demand snapshot of one server and its payment."""

    server: ServerView
    payment: PaymentView | None
    history: list[TransitionView] = []
