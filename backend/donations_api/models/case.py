import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from donations_api.db.base import Base


class Case(Base):
    """A fundraising need that donations can be earmarked toward."""

    __tablename__ = "cases"
    __table_args__ = (
        CheckConstraint("amount_required > 0", name="ck_cases_amount_required_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    case_type: Mapped[str] = mapped_column(String(20), nullable=False, default="zakaat")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="AUD")
    amount_required: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    # Derived; written only by services.aggregator.
    amount_collected: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    recurring_allowed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )
