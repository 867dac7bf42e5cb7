"""Payment and server status domains, and the transitions between them."""

REQUIRES_PAYMENT_METHOD = "requires_payment_method"
SUCCEEDED = "succeeded"
FAILED = "failed"

INSTALLING = "installing"
ACTIVE = "active"
SERVER_FAILED = "failed"

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    REQUIRES_PAYMENT_METHOD: {SUCCEEDED, FAILED},
    SUCCEEDED: set(),
    FAILED: set(),
}

# Server status is derived from the paired payment, never written directly.
SERVER_STATUS_FOR_PAYMENT: dict[str, str] = {
    REQUIRES_PAYMENT_METHOD: INSTALLING,
    SUCCEEDED: ACTIVE,
    FAILED: SERVER_FAILED,
}


def validate_transition(current: str, new: str) -> None:
    """Raise when a payment transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")


def server_status_for(payment_status: str) -> str:
    """Map a payment status onto the paired server's status."""

    try:
        return SERVER_STATUS_FOR_PAYMENT[payment_status]
    except KeyError:
        raise ValueError(f"Unknown payment status: {payment_status}") from None
