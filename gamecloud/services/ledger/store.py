"""Ledger store access layer.

All writes to servers and payments go through this class. Methods are
synchronous; async callers run them in a worker thread so a slow database
never stalls the event loop.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from gamecloud.common.errors import DuplicateError, StoreUnavailable
from gamecloud.common.logging import logger
from gamecloud.common.state_machine import server_status_for, validate_transition
from gamecloud.services.ledger.models import Payment, PaymentTransition, Server


@dataclass(frozen=True)
class ConditionalUpdateResult:
    """Outcome of a compare-and-set on one payment's status.

    `current_status` is None when no payment carries the reference.
    """

    applied: bool
    current_status: str | None
    payment_id: str | None = None
    server_id: str | None = None
    payment_created_at: datetime | None = None


class LedgerStore:
    """Durable record of Server and Payment pairs with atomic transitions."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def create_server_and_payment(self, server: Server, payment: Payment) -> tuple[Server, Payment]:
        """Persist a server and its paired payment in one transaction."""

        try:
            with self.session_factory() as db:
                db.add(server)
                db.flush()
                payment.server_id = server.server_id
                db.add(payment)
                db.flush()
                db.add(
                    PaymentTransition(
                        payment_id=payment.payment_id,
                        from_status=None,
                        to_status=payment.status,
                        reason="payment_created",
                        event_id=None,
                    )
                )
                db.commit()
                return server, payment
        except IntegrityError as exc:
            raise DuplicateError(f"server or payment already exists: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"create_server_and_payment failed: {exc}") from exc

    def attach_payment_intent(self, payment_id: str, payment_intent_ref: str) -> None:
        """Bind the processor reference to a payment that has none yet."""

        try:
            with self.session_factory() as db:
                result = db.execute(
                    update(Payment)
                    .where(Payment.payment_id == payment_id, Payment.payment_intent_ref.is_(None))
                    .values(payment_intent_ref=payment_intent_ref, updated_at=datetime.now(timezone.utc))
                )
                if result.rowcount != 1:
                    raise DuplicateError(f"payment {payment_id} is missing or already bound")
                db.commit()
        except IntegrityError as exc:
            raise DuplicateError(f"payment intent {payment_intent_ref} already bound") from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"attach_payment_intent failed: {exc}") from exc

    def conditional_update_payment_status(
        self,
        payment_intent_ref: str,
        expected_status: str,
        new_status: str,
        event_id: str | None = None,
        expected_server_id: str | None = None,
    ) -> ConditionalUpdateResult:
        """Move a payment from `expected_status` to `new_status` at most once.

        The write is guarded by `(payment_intent_ref, status)` so concurrent or
        repeated deliveries cannot both succeed. The paired server's derived
        status and the audit row are written in the same transaction. When
        `expected_server_id` is given and does not match the stored pairing,
        nothing is written.
        """

        validate_transition(expected_status, new_status)
        try:
            with self.session_factory() as db:
                row = db.execute(
                    select(
                        Payment.payment_id,
                        Payment.server_id,
                        Payment.status,
                        Payment.created_at,
                    ).where(Payment.payment_intent_ref == payment_intent_ref)
                ).one_or_none()
                if row is None:
                    return ConditionalUpdateResult(applied=False, current_status=None)
                found = ConditionalUpdateResult(
                    applied=False,
                    current_status=row.status,
                    payment_id=row.payment_id,
                    server_id=row.server_id,
                    payment_created_at=row.created_at,
                )
                if expected_server_id is not None and expected_server_id != row.server_id:
                    return found

                result = db.execute(
                    update(Payment)
                    .where(
                        Payment.payment_intent_ref == payment_intent_ref,
                        Payment.status == expected_status,
                    )
                    .values(status=new_status, updated_at=datetime.now(timezone.utc))
                )
                if result.rowcount != 1:
                    current = db.execute(
                        select(Payment.status).where(Payment.payment_id == row.payment_id)
                    ).scalar_one()
                    db.rollback()
                    return ConditionalUpdateResult(
                        applied=False,
                        current_status=current,
                        payment_id=row.payment_id,
                        server_id=row.server_id,
                        payment_created_at=row.created_at,
                    )

                self._set_server_status(db, row.server_id, server_status_for(new_status))
                db.add(
                    PaymentTransition(
                        payment_id=row.payment_id,
                        from_status=expected_status,
                        to_status=new_status,
                        reason="webhook",
                        event_id=event_id,
                    )
                )
                db.commit()
                logger.info(
                    "payment transition applied payment_id=%s %s -> %s",
                    row.payment_id,
                    expected_status,
                    new_status,
                )
                return ConditionalUpdateResult(
                    applied=True,
                    current_status=new_status,
                    payment_id=row.payment_id,
                    server_id=row.server_id,
                    payment_created_at=row.created_at,
                )
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"conditional update failed: {exc}") from exc

    def _set_server_status(self, db, server_id: str, new_status: str) -> bool:
        result = db.execute(
            update(Server)
            .where(Server.server_id == server_id)
            .values(status=new_status, updated_at=datetime.now(timezone.utc))
        )
        return result.rowcount == 1

    def update_server_status(self, server_id: str, new_status: str) -> bool:
        """Overwrite one server's status; returns False for unknown ids."""

        try:
            with self.session_factory() as db:
                changed = self._set_server_status(db, server_id, new_status)
                db.commit()
                return changed
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"update_server_status failed: {exc}") from exc

    def get_server(self, server_id: str) -> Server | None:
        try:
            with self.session_factory() as db:
                return db.get(Server, server_id)
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"get_server failed: {exc}") from exc

    def get_server_status(self, server_id: str) -> str | None:
        try:
            with self.session_factory() as db:
                return db.execute(
                    select(Server.status).where(Server.server_id == server_id)
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"get_server_status failed: {exc}") from exc

    def get_payment_for_server(self, server_id: str) -> Payment | None:
        try:
            with self.session_factory() as db:
                return db.execute(
                    select(Payment).where(Payment.server_id == server_id)
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"get_payment_for_server failed: {exc}") from exc

    def list_transitions(self, payment_id: str) -> list[PaymentTransition]:
        """Audit rows for one payment, oldest first."""

        try:
            with self.session_factory() as db:
                return list(
                    db.execute(
                        select(PaymentTransition)
                        .where(PaymentTransition.payment_id == payment_id)
                        .order_by(PaymentTransition.created_at)
                    ).scalars()
                )
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"list_transitions failed: {exc}") from exc
