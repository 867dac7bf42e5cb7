"""initial ledger schema

Revision ID: 0001_ledger
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_ledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "servers",
        sa.Column("server_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("game", sa.String(), nullable=False),
        sa.Column("region", sa.String(), nullable=False),
        sa.Column("tier", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("server_id"),
    )
    op.create_index("ix_servers_user_id", "servers", ["user_id"])
    op.create_index("ix_servers_status", "servers", ["status"])

    op.create_table(
        "payments",
        sa.Column("payment_id", sa.String(), nullable=False),
        sa.Column("server_id", sa.String(), nullable=False),
        sa.Column("payment_intent_ref", sa.String(), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["server_id"], ["servers.server_id"]),
        sa.PrimaryKeyConstraint("payment_id"),
    )
    op.create_index("ix_payments_server_id", "payments", ["server_id"], unique=True)
    op.create_index("ix_payments_payment_intent_ref", "payments", ["payment_intent_ref"], unique=True)
    op.create_index("ix_payments_status", "payments", ["status"])

    op.create_table(
        "payment_transitions",
        sa.Column("transition_id", sa.String(), nullable=False),
        sa.Column("payment_id", sa.String(), nullable=False),
        sa.Column("from_status", sa.String(), nullable=True),
        sa.Column("to_status", sa.String(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("event_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.payment_id"]),
        sa.PrimaryKeyConstraint("transition_id"),
    )
    op.create_index("ix_payment_transitions_payment_id", "payment_transitions", ["payment_id"])
    op.create_index("ix_payment_transitions_event_id", "payment_transitions", ["event_id"])


def downgrade() -> None:
    op.drop_index("ix_payment_transitions_event_id", table_name="payment_transitions")
    op.drop_index("ix_payment_transitions_payment_id", table_name="payment_transitions")
    op.drop_table("payment_transitions")
    op.drop_index("ix_payments_status", table_name="payments")
    op.drop_index("ix_payments_payment_intent_ref", table_name="payments")
    op.drop_index("ix_payments_server_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_servers_status", table_name="servers")
    op.drop_index("ix_servers_user_id", table_name="servers")
    op.drop_table("servers")
