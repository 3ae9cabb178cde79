from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, func, true
from sqlalchemy.orm import Mapped, mapped_column

from bonus_core.core.time import utcnow
from bonus_core.db.base import Base

CONTRACT_STATUS_IN_PROGRESS = "in_progress"
CONTRACT_STATUS_COMPLETED = "completed"

ORDER_STATUS_NEW = "new"
ORDER_STATUS_DELIVERED = "delivered"

PARTNER_PAYMENT_PENDING = "pending"
PARTNER_PAYMENT_PAID = "paid"


class DealMixin:
    """Columns shared by contracts and orders."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id"), index=True, nullable=False)

    amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    agent_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    curator_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, server_default=true(), default=True, nullable=False)
    # lifecycle status slug
    status: Mapped[str] = mapped_column(String(32), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=utcnow, nullable=True)

    kind = "deal"

    @property
    def ref(self) -> str:
        return f"{self.kind}:{self.id}"


class Contract(DealMixin, Base):
    __tablename__ = "contracts"

    kind = "contract"

    number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # pending -> paid (the partner paid us for this contract)
    partner_payment_status: Mapped[str] = mapped_column(
        String(16), server_default=PARTNER_PAYMENT_PENDING, default=PARTNER_PAYMENT_PENDING, nullable=False
    )
    partner_payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)


class Order(DealMixin, Base):
    __tablename__ = "orders"

    kind = "order"

    number: Mapped[str | None] = mapped_column(String(64), nullable=True)
