"""Payment processor client.

`PaymentProcessor` is the seam the provisioning service depends on;
`StripePaymentProcessor` is the production implementation.
"""

import asyncio
from dataclasses import dataclass
from typing import Protocol

import stripe

from gamecloud.common.errors import UpstreamPaymentError
from gamecloud.common.logging import logger


@dataclass(frozen=True)
class PaymentIntent:
    """Processor-issued intent: the reference and the token handed to clients."""

    reference: str
    client_token: str


class PaymentProcessor(Protocol):
    async def create_payment_intent(
        self, amount_cents: int, currency: str, metadata: dict[str, str]
    ) -> PaymentIntent: ...


class StripePaymentProcessor:
    """Creates Stripe PaymentIntents tagged with server metadata."""

    def __init__(self, api_key: str) -> None:
        self.api_key = api_key

    def _create(self, amount_cents: int, currency: str, metadata: dict[str, str]) -> PaymentIntent:
        intent = stripe.PaymentIntent.create(
            amount=amount_cents,
            currency=currency,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
            api_key=self.api_key,
            # One intent per payment row, even if the HTTP call is retried.
            idempotency_key=f"payment-intent:{metadata['payment_id']}",
        )
        return PaymentIntent(reference=intent.id, client_token=intent.client_secret)

    async def create_payment_intent(
        self, amount_cents: int, currency: str, metadata: dict[str, str]
    ) -> PaymentIntent:
        """Run the blocking Stripe call in a worker thread."""

        try:
            return await asyncio.to_thread(self._create, amount_cents, currency, metadata)
        except stripe.StripeError as exc:
            logger.error("stripe payment intent creation failed: %s", exc)
            raise UpstreamPaymentError(f"stripe error: {exc.user_message or exc}") from exc
