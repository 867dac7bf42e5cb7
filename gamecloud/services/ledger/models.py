"""Ledger database models.

This DB is the source of truth for servers, their paired payments, and the
audit trail of payment status changes.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from gamecloud.common.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Server(Base):
    """Requested game server; status is derived from its payment."""

    __tablename__ = "servers"

    server_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String, index=True)
    game: Mapped[str] = mapped_column(String)
    region: Mapped[str] = mapped_column(String)
    tier: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )


class Payment(Base):
    """Payment paired 1:1 with a server.

    `payment_intent_ref` is null until the processor answers, then unique.
    """

    __tablename__ = "payments"

    payment_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    server_id: Mapped[str] = mapped_column(ForeignKey("servers.server_id"), unique=True, index=True)
    payment_intent_ref: Mapped[str | None] = mapped_column(String, unique=True, index=True, nullable=True)
    amount_cents: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3))
    status: Mapped[str] = mapped_column(String, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )


class PaymentTransition(Base):
    """Immutable audit trail of every payment status change."""

    __tablename__ = "payment_transitions"

    transition_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    payment_id: Mapped[str] = mapped_column(ForeignKey("payments.payment_id"), index=True)
    from_status: Mapped[str | None] = mapped_column(String, nullable=True)
    to_status: Mapped[str] = mapped_column(String)
    reason: Mapped[str] = mapped_column(String)
    event_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
