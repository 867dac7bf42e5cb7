"""Server provisioning: validate, create the server/payment pair, open an intent."""

import asyncio
from dataclasses import dataclass
from typing import Any

from gamecloud.common.config import CommonSettings
from gamecloud.common.errors import UpstreamPaymentError, ValidationError
from gamecloud.common.logging import logger, server_id_ctx
from gamecloud.common.metrics import (
    processor_latency_seconds,
    provisioning_failures_total,
    provisioning_requests_total,
)
from gamecloud.common.state_machine import INSTALLING, REQUIRES_PAYMENT_METHOD
from gamecloud.services.ledger.models import Payment, Server
from gamecloud.services.ledger.store import LedgerStore
from gamecloud.services.provisioning.processor import PaymentProcessor

TIER_PRICES_CENTS: dict[int, int] = {1: 250, 2: 500, 3: 1000}


@dataclass(frozen=True)
class ProvisioningResult:
    server: Server
    payment: Payment
    client_token: str


class ProvisioningService:
    """Owns creation of Server/Payment pairs and their payment intents."""

    def __init__(
        self,
        store: LedgerStore,
        processor: PaymentProcessor,
        config: CommonSettings,
    ) -> None:
        self.store = store
        self.processor = processor
        self.config = config

    def validate(self, user_id: Any, game: Any, region: Any, tier: Any) -> None:
        """Raise `ValidationError` naming every field of the wrong type or outside its domain."""

        problems: dict[str, str] = {}
        if not isinstance(user_id, str) or not user_id.strip():
            problems["user_id"] = "must be a non-empty string"
        if not isinstance(game, str) or game not in self.config.games:
            problems["game"] = f"must be one of {sorted(self.config.games)}"
        if not isinstance(region, str) or region not in self.config.regions:
            problems["region"] = f"must be one of {sorted(self.config.regions)}"
        if not isinstance(tier, int) or isinstance(tier, bool) or tier not in TIER_PRICES_CENTS:
            problems["tier"] = f"must be one of {sorted(TIER_PRICES_CENTS)}"
        if problems:
            raise ValidationError(problems)

    async def request_server(self, user_id: str, game: str, region: str, tier: int) -> ProvisioningResult:
        """Create a server in `installing` and the payment intent that will activate it.

        If the processor fails, the records stay in their initial states and
        `UpstreamPaymentError` is raised; no retry happens here.
        """

        provisioning_requests_total.labels(service=self.config.service_name).inc()
        try:
            self.validate(user_id, game, region, tier)
        except ValidationError:
            provisioning_failures_total.labels(service=self.config.service_name, reason="validation").inc()
            raise

        amount_cents = TIER_PRICES_CENTS[tier]
        server, payment = await asyncio.to_thread(
            self.store.create_server_and_payment,
            Server(user_id=user_id, game=game, region=region, tier=tier, status=INSTALLING),
            Payment(amount_cents=amount_cents, currency=self.config.currency, status=REQUIRES_PAYMENT_METHOD),
        )
        server_id_ctx.set(server.server_id)
        logger.info(
            "server created server_id=%s payment_id=%s tier=%s amount_cents=%s",
            server.server_id,
            payment.payment_id,
            tier,
            amount_cents,
        )

        metadata = {"server_id": server.server_id, "payment_id": payment.payment_id}
        try:
            with processor_latency_seconds.labels(service=self.config.service_name).time():
                intent = await asyncio.wait_for(
                    self.processor.create_payment_intent(amount_cents, payment.currency, metadata),
                    timeout=self.config.processor_timeout_seconds,
                )
        except asyncio.TimeoutError as exc:
            provisioning_failures_total.labels(service=self.config.service_name, reason="timeout").inc()
            logger.warning("payment processor timed out server_id=%s", server.server_id)
            raise UpstreamPaymentError("payment processor timed out") from exc
        except UpstreamPaymentError:
            provisioning_failures_total.labels(service=self.config.service_name, reason="upstream").inc()
            raise

        await asyncio.to_thread(self.store.attach_payment_intent, payment.payment_id, intent.reference)
        payment.payment_intent_ref = intent.reference
        logger.info("payment intent bound payment_id=%s ref=%s", payment.payment_id, intent.reference)
        return ProvisioningResult(server=server, payment=payment, client_token=intent.client_token)
