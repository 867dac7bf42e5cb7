"""Shapes of the processor webhook events the reconciler consumes."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: dict[str, Any]


class WebhookEvent(BaseModel):
    """Stripe event envelope; only the fields used for reconciliation."""

    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    data: EventData


class PaymentIntentObject(BaseModel):
    """`data.object` of a `payment_intent.*` event."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    metadata: dict[str, str] = Field(default_factory=dict)
