import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from donations_api.db.base import Base

DONATION_TYPES = ("zakaat", "sadqah", "interest")
FREQUENCIES = ("one-off", "weekly", "monthly")
PAYMENT_METHODS = ("stripe", "paypal", "apple_pay", "google_pay", "pakistan_gateway")

STATUS_PENDING = "pending"
STATUS_AWAITING = "awaiting_confirmation"
STATUS_COMPLETED = "completed"
STATUS_ACTIVE_SUBSCRIPTION = "active_subscription"
STATUS_FAILED = "failed"

DONATION_STATUSES = (
    STATUS_PENDING,
    STATUS_AWAITING,
    STATUS_COMPLETED,
    STATUS_ACTIVE_SUBSCRIPTION,
    STATUS_FAILED,
)

# Statuses whose money counts towards a case total.
CONFIRMED_STATUSES = (STATUS_COMPLETED, STATUS_ACTIVE_SUBSCRIPTION)


class Donation(Base):
    __tablename__ = "donations"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_donations_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'awaiting_confirmation', 'completed', "
            "'active_subscription', 'failed')",
            name="ck_donations_status",
        ),
        Index("ix_donations_case_status", "case_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    frequency: Mapped[str] = mapped_column(String(20), nullable=False, server_default="one-off")
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=STATUS_PENDING, index=True
    )
    case_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("cases.id", ondelete="SET NULL"), nullable=True
    )
    destination_project: Mapped[str | None] = mapped_column(Text, nullable=True)
    donor_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    donor_email: Mapped[str | None] = mapped_column(Text, nullable=True)

    provider_payment_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True
    )
    provider_subscription_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True
    )
    subscription_status: Mapped[str | None] = mapped_column(String(30), nullable=True)

    cover_fees: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    processing_fee: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    charge_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    # amount in the case's currency, fixed at completion time
    case_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    @property
    def is_recurring(self) -> bool:
        return self.frequency != "one-off"
