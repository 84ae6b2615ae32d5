from datetime import datetime

from sqlalchemy import DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from donations_api.db.base import Base


class ProviderEvent(Base):
    """A provider notification already processed; kept only for the dedup window."""

    __tablename__ = "provider_events"
    __table_args__ = (
        UniqueConstraint("provider_name", "dedup_key", name="uq_provider_events_key"),
        Index("ix_provider_events_received_at", "received_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    provider_name: Mapped[str] = mapped_column(String(30), nullable=False)
    dedup_key: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(120), nullable=False)
    related_provider_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
