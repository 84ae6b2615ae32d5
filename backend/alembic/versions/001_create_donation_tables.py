"""Create cases, donations and provider_events

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- cases ---
    op.create_table(
        "cases",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("case_type", sa.String(20), nullable=False, server_default="zakaat"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="AUD"),
        sa.Column("amount_required", sa.Numeric(12, 2), nullable=False),
        sa.Column("amount_collected", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("recurring_allowed", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount_required > 0", name="ck_cases_amount_required_positive"),
    )
    op.create_index("ix_cases_active", "cases", ["active"])

    # --- donations ---
    op.create_table(
        "donations",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("frequency", sa.String(20), nullable=False, server_default="one-off"),
        sa.Column("payment_method", sa.String(30), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column(
            "case_id",
            sa.UUID(),
            sa.ForeignKey("cases.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("destination_project", sa.Text(), nullable=True),
        sa.Column("donor_name", sa.Text(), nullable=True),
        sa.Column("donor_email", sa.Text(), nullable=True),
        sa.Column("provider_payment_id", sa.String(255), nullable=True),
        sa.Column("provider_subscription_id", sa.String(255), nullable=True),
        sa.Column("subscription_status", sa.String(30), nullable=True),
        sa.Column("cover_fees", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("processing_fee", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("charge_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("case_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_donations_amount_positive"),
        sa.CheckConstraint(
            "status IN ('pending', 'awaiting_confirmation', 'completed', "
            "'active_subscription', 'failed')",
            name="ck_donations_status",
        ),
        sa.UniqueConstraint("provider_payment_id", name="uq_donations_provider_payment_id"),
        sa.UniqueConstraint(
            "provider_subscription_id", name="uq_donations_provider_subscription_id"
        ),
    )
    op.create_index("ix_donations_status", "donations", ["status"])
    op.create_index("ix_donations_case_status", "donations", ["case_id", "status"])

    # --- provider_events (webhook dedup window) ---
    op.create_table(
        "provider_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider_name", sa.String(30), nullable=False),
        sa.Column("dedup_key", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(120), nullable=False),
        sa.Column("related_provider_payment_id", sa.String(255), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("provider_name", "dedup_key", name="uq_provider_events_key"),
    )
    op.create_index("ix_provider_events_received_at", "provider_events", ["received_at"])


def downgrade() -> None:
    op.drop_index("ix_provider_events_received_at", table_name="provider_events")
    op.drop_table("provider_events")
    op.drop_index("ix_donations_case_status", table_name="donations")
    op.drop_index("ix_donations_status", table_name="donations")
    op.drop_table("donations")
    op.drop_index("ix_cases_active", table_name="cases")
    op.drop_table("cases")
