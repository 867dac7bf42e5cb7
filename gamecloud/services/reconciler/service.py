"""Webhook reconciliation.

Applies processor payment outcomes to the ledger exactly once, whatever the
delivery order or duplication, and pushes the resulting server status to live
subscribers. Every transition is a compare-and-set on the unresolved payment
status; nothing here ever overwrites a resolved payment.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone

import pydantic
import stripe

from gamecloud.common.config import CommonSettings
from gamecloud.common.errors import (
    AuthenticationError,
    PaymentIntentNotBound,
    ReconciliationConflict,
    ValidationError,
)
from gamecloud.common.logging import event_id_ctx, logger, server_id_ctx
from gamecloud.common.metrics import (
    payment_e2e_seconds,
    reconciliation_conflicts_total,
    webhook_events_total,
    webhook_rejected_total,
)
from gamecloud.common.state_machine import FAILED, REQUIRES_PAYMENT_METHOD, SUCCEEDED, server_status_for
from gamecloud.common.tracing import tracer
from gamecloud.services.fanout.service import StatusFanout
from gamecloud.services.ledger.store import ConditionalUpdateResult, LedgerStore
from gamecloud.services.reconciler.schemas import PaymentIntentObject, WebhookEvent

# Event types that resolve a payment, and the payment status each one means.
OUTCOME_FOR_EVENT: dict[str, str] = {
    "payment_intent.succeeded": SUCCEEDED,
    "payment_intent.payment_failed": FAILED,
    "payment_intent.canceled": FAILED,
}

APPLIED = "applied"
REPLAYED = "replayed"
CONFLICT = "conflict"
IGNORED = "ignored"


@dataclass(frozen=True)
class ReconcileResult:
    """What happened to one webhook delivery. Every outcome is acknowledged."""

    outcome: str
    event_id: str | None = None
    server_id: str | None = None
    status: str | None = None
    conflict: ReconciliationConflict | None = None


class WebhookReconciler:
    """Verifies, parses and applies payment-outcome webhooks."""

    def __init__(self, store: LedgerStore, fanout: StatusFanout, config: CommonSettings) -> None:
        self.store = store
        self.fanout = fanout
        self.config = config

    def verify(self, payload: bytes, signature: str | None) -> None:
        """Check the `Stripe-Signature` header before the body is looked at."""

        if not signature:
            raise AuthenticationError("missing signature header")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                self.config.stripe_webhook_secret,
                self.config.stripe_webhook_tolerance_seconds,
            )
        except (UnicodeDecodeError, stripe.SignatureVerificationError) as exc:
            raise AuthenticationError(f"invalid webhook signature: {exc}") from exc

    def _count(self, event_type: str, outcome: str) -> None:
        webhook_events_total.labels(
            service=self.config.service_name,
            event_type=event_type,
            outcome=outcome,
        ).inc()

    def _observe_e2e(self, result: ConditionalUpdateResult, status: str) -> None:
        created_at = result.payment_created_at
        if created_at is None:
            return
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        elapsed = max(0.0, (datetime.now(timezone.utc) - created_at).total_seconds())
        payment_e2e_seconds.labels(service=self.config.service_name, terminal_state=status).observe(elapsed)

    def _conflict(self, event: WebhookEvent, conflict: ReconciliationConflict, server_id: str | None) -> ReconcileResult:
        reconciliation_conflicts_total.labels(service=self.config.service_name).inc()
        self._count(event.type, CONFLICT)
        logger.error(
            "reconciliation conflict event_id=%s event_type=%s: %s",
            event.id,
            event.type,
            conflict,
        )
        return ReconcileResult(outcome=CONFLICT, event_id=event.id, server_id=server_id, conflict=conflict)

    async def _apply(self, ref: str, target: str, event_id: str, server_id: str) -> ConditionalUpdateResult:
        with tracer.start_as_current_span("reconcile_payment_intent"):
            return await asyncio.to_thread(
                self.store.conditional_update_payment_status,
                ref,
                REQUIRES_PAYMENT_METHOD,
                target,
                event_id,
                server_id,
            )

    async def handle(self, payload: bytes, signature: str | None) -> ReconcileResult:
        """Process one delivery.

        Raises `AuthenticationError` or `ValidationError` for deliveries that
        must be rejected, and lets `StoreUnavailable` / `PaymentIntentNotBound`
        propagate so the processor redelivers. Any returned result means the
        event was consumed.
        """

        try:
            self.verify(payload, signature)
        except AuthenticationError:
            webhook_rejected_total.labels(service=self.config.service_name, reason="signature").inc()
            logger.warning("webhook rejected: bad signature")
            raise

        try:
            event = WebhookEvent.model_validate_json(payload)
        except pydantic.ValidationError as exc:
            webhook_rejected_total.labels(service=self.config.service_name, reason="malformed").inc()
            raise ValidationError({"body": "not a webhook event"}) from exc
        event_id_ctx.set(event.id)

        target = OUTCOME_FOR_EVENT.get(event.type)
        if target is None:
            logger.info("webhook ignored event_type=%s", event.type)
            self._count(event.type, IGNORED)
            return ReconcileResult(outcome=IGNORED, event_id=event.id)

        try:
            intent = PaymentIntentObject.model_validate(event.data.object)
        except pydantic.ValidationError as exc:
            webhook_rejected_total.labels(service=self.config.service_name, reason="malformed").inc()
            raise ValidationError({"data.object": "not a payment intent"}) from exc

        server_id = intent.metadata.get("server_id")
        if not server_id:
            conflict = ReconciliationConflict(intent.id, None, target, detail="missing server_id metadata")
            return self._conflict(event, conflict, None)
        server_id_ctx.set(server_id)

        result = await self._apply(intent.id, target, event.id, server_id)
        if result.current_status is None:
            payment = await asyncio.to_thread(self.store.get_payment_for_server, server_id)
            if payment is not None and payment.payment_intent_ref is None:
                # Webhook overtook the provisioning handler; let the processor redeliver.
                raise PaymentIntentNotBound(f"payment intent {intent.id} not bound yet for server {server_id}")
            if payment is not None and payment.payment_intent_ref == intent.id:
                # Bound between the two reads.
                result = await self._apply(intent.id, target, event.id, server_id)

        if result.current_status is None:
            logger.warning("webhook for unknown payment intent ref=%s", intent.id)
            self._count(event.type, IGNORED)
            return ReconcileResult(outcome=IGNORED, event_id=event.id, server_id=server_id)

        if result.server_id != server_id:
            conflict = ReconciliationConflict(
                intent.id,
                result.current_status,
                target,
                detail=f"metadata server_id {server_id} does not match ledger server_id {result.server_id}",
            )
            return self._conflict(event, conflict, result.server_id)

        if result.applied:
            outcome = APPLIED
            self._observe_e2e(result, target)
        elif result.current_status == target:
            outcome = REPLAYED
            logger.info("duplicate outcome skipped ref=%s status=%s", intent.id, target)
        else:
            conflict = ReconciliationConflict(intent.id, result.current_status, target)
            return self._conflict(event, conflict, result.server_id)

        server_status = server_status_for(target)
        # Replays publish too, so a subscriber that joined mid-flight converges.
        await self.fanout.publish(result.server_id, server_status)
        self._count(event.type, outcome)
        return ReconcileResult(
            outcome=outcome,
            event_id=event.id,
            server_id=result.server_id,
            status=server_status,
        )
