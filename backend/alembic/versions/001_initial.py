"""Initial schema: directory, ledger, transactions, payment requests, receipts

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = sa.dialects.postgresql.UUID(as_uuid=True)


def _money(name: str, nullable: bool = False, zero_default: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.Numeric(12, 2),
        nullable=nullable,
        server_default=sa.text("0") if zero_default else None,
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Users (mirrored from the identity provider)
    op.create_table(
        "users",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("display_name", sa.String(150), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Driver directory
    op.create_table(
        "drivers",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), unique=True, nullable=True),
        sa.Column("full_name", sa.String(200), nullable=True),
        sa.Column("name", sa.String(150), nullable=True),
        sa.Column("first_names", sa.String(100), nullable=True),
        sa.Column("last_names", sa.String(100), nullable=True),
        sa.Column("tax_id", sa.String(20), nullable=True),
        sa.Column("national_id", sa.String(20), nullable=True),
        *_timestamps(),
    )

    # Account ledgers
    op.create_table(
        "account_ledgers",
        sa.Column("driver_id", UUID, sa.ForeignKey("drivers.id", ondelete="RESTRICT"), primary_key=True),
        _money("available_balance", zero_default=True),
        _money("held_balance", zero_default=True),
        _money("commission_debt", zero_default=True),
        _money("lifetime_income_total", zero_default=True),
        _money("lifetime_commission_total", zero_default=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("last_transaction_id", UUID, nullable=True),
        sa.Column("last_transaction_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_driver_note", sa.Text(), nullable=True),
        sa.Column("last_admin_note", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("commission_debt >= 0", name="ck_account_ledger_debt_non_negative"),
    )

    # Driver transactions
    op.create_table(
        "driver_transactions",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("driver_id", UUID, sa.ForeignKey("drivers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("source", sa.String(30), nullable=False),
        sa.Column("trip_id", sa.String(64), nullable=True),
        _money("gross_amount", zero_default=True),
        _money("commission_amount"),
        _money("net_amount", zero_default=True),
        sa.Column("reference", sa.String(120), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        *_timestamps(),
        sa.CheckConstraint(
            "(source = 'TRIP') = (trip_id IS NOT NULL)",
            name="ck_driver_transaction_trip_id_matches_source",
        ),
    )
    op.create_index("ix_driver_transactions_driver_id", "driver_transactions", ["driver_id"])
    op.create_index(
        "ix_driver_transaction_driver_created", "driver_transactions", ["driver_id", "created_at"]
    )
    op.create_index(
        "uq_driver_transaction_trip_charge",
        "driver_transactions",
        ["driver_id", "trip_id"],
        unique=True,
    )

    # Payment requests
    op.create_table(
        "payment_requests",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("driver_id", UUID, sa.ForeignKey("drivers.id", ondelete="RESTRICT"), nullable=False),
        _money("amount"),
        sa.Column("reference", sa.String(120), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="IN_REVIEW"),
        _money("applied_amount", nullable=True),
        _money("debt_before", nullable=True),
        _money("debt_after", nullable=True),
        sa.Column(
            "applied_transaction_id",
            UUID,
            sa.ForeignKey("driver_transactions.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("admin_note", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("reviewed_by", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_payment_request_amount_positive"),
    )
    op.create_index("ix_payment_requests_driver_id", "payment_requests", ["driver_id"])
    op.create_index("ix_payment_requests_status", "payment_requests", ["status"])
    op.create_index(
        "ix_payment_request_driver_created", "payment_requests", ["driver_id", "created_at"]
    )

    # Receipts
    op.create_table(
        "receipts",
        sa.Column("id", UUID, primary_key=True),
        sa.Column(
            "payment_request_id",
            UUID,
            sa.ForeignKey("payment_requests.id", ondelete="RESTRICT"),
            unique=True,
            nullable=False,
        ),
        sa.Column("driver_id", UUID, sa.ForeignKey("drivers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("document_type", sa.String(20), nullable=False),
        sa.Column("series", sa.String(10), nullable=False),
        sa.Column("number", sa.String(20), nullable=False),
        sa.Column("series_number", sa.String(32), unique=True, nullable=False),
        _money("amount"),
        sa.Column("issue_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("pdf_url", sa.String(500), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_receipts_driver_id", "receipts", ["driver_id"])

    op.create_table(
        "receipt_sequences",
        sa.Column("series", sa.String(10), primary_key=True),
        sa.Column("last_number", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )

    # Receipt follow-up queue
    op.create_table(
        "receipt_tasks",
        sa.Column("id", UUID, primary_key=True),
        sa.Column(
            "payment_request_id",
            UUID,
            sa.ForeignKey("payment_requests.id", ondelete="RESTRICT"),
            unique=True,
            nullable=False,
        ),
        sa.Column("driver_id", UUID, sa.ForeignKey("drivers.id", ondelete="RESTRICT"), nullable=False),
        _money("amount"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("receipt_id", UUID, sa.ForeignKey("receipts.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_receipt_task_status_next_attempt", "receipt_tasks", ["status", "next_attempt_at"]
    )

    # Admin audit trail
    op.create_table(
        "audit_logs",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("admin_user_id", UUID, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "target_driver_id", UUID, sa.ForeignKey("drivers.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("receipt_tasks")
    op.drop_table("receipt_sequences")
    op.drop_table("receipts")
    op.drop_table("payment_requests")
    op.drop_table("driver_transactions")
    op.drop_table("account_ledgers")
    op.drop_table("drivers")
    op.drop_table("users")
