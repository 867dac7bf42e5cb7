"""Error taxonomy shared by provisioning, reconciliation and the HTTP surface."""


class GameCloudError(Exception):
    """Base class for all domain errors raised by this package."""


class ValidationError(GameCloudError):
    """Request fields fell outside their allowed domains.

    `fields` maps each offending field name to a short reason so clients can
    correct every problem in one round trip.
    """

    def __init__(self, fields: dict[str, str]) -> None:
        self.fields = dict(fields)
        super().__init__("invalid fields: " + ", ".join(sorted(self.fields)))


class AuthenticationError(GameCloudError):
    """Webhook signature did not verify against the shared secret."""


class UpstreamPaymentError(GameCloudError):
    """Payment processor was unreachable, timed out, or rejected the call."""


class StoreUnavailable(GameCloudError):
    """Ledger store could not complete an operation; safe to retry later."""


class DuplicateError(GameCloudError):
    """A record with the same identity already exists in the ledger."""


class PaymentIntentNotBound(GameCloudError):
    """Webhook arrived before its payment-intent reference was stored."""


class ReconciliationConflict(GameCloudError):
    """Contradictory outcome for a payment intent that is already resolved.

    Never raised to end users. It indicates replayed or corrupted input and
    is reported as an operational alert.
    """

    def __init__(
        self,
        payment_intent_ref: str,
        current_status: str | None,
        attempted_status: str,
        detail: str = "",
    ) -> None:
        self.payment_intent_ref = payment_intent_ref
        self.current_status = current_status
        self.attempted_status = attempted_status
        self.detail = detail
        message = (
            f"payment intent {payment_intent_ref} is {current_status}, "
            f"refusing {attempted_status}"
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
