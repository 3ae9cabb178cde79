from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from bonus_core.core.time import utcnow
from bonus_core.db.base import Base

REQUEST_STATUS_REQUESTED = "requested"
REQUEST_STATUS_APPROVED = "approved"
REQUEST_STATUS_PAID = "paid"
REQUEST_STATUS_CANCELLED = "cancelled"

REQUEST_STATUSES = (
    REQUEST_STATUS_REQUESTED,
    REQUEST_STATUS_APPROVED,
    REQUEST_STATUS_PAID,
    REQUEST_STATUS_CANCELLED,
)

PAYMENT_METHOD_CARD = "card"
PAYMENT_METHOD_SBP = "sbp"
PAYMENT_METHOD_OTHER = "other"

# method -> the detail column it requires
PAYMENT_METHOD_DETAIL_FIELDS = {
    PAYMENT_METHOD_CARD: "card_number",
    PAYMENT_METHOD_SBP: "phone_number",
    PAYMENT_METHOD_OTHER: "contact_info",
}


class PaymentRequest(Base):
    """Recipient's withdraw request against their available bonuses."""

    __tablename__ = "bonus_payment_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # card | sbp | other
    payment_method: Mapped[str] = mapped_column(String(16), nullable=False)
    card_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    contact_info: Mapped[str | None] = mapped_column(Text, nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    # requested -> approved -> paid | cancelled
    status: Mapped[str] = mapped_column(
        String(16), server_default=REQUEST_STATUS_REQUESTED, default=REQUEST_STATUS_REQUESTED, nullable=False
    )
    # set only while status == paid
    payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=utcnow, nullable=True)

    @property
    def payment_details(self) -> str | None:
        field = PAYMENT_METHOD_DETAIL_FIELDS.get(self.payment_method)
        return getattr(self, field) if field else None


class SettlementLink(Base):
    """Portion of one bonus consumed by one payment request."""

    __tablename__ = "bonus_payment_request_bonuses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    payment_request_id: Mapped[int] = mapped_column(
        ForeignKey("bonus_payment_requests.id", ondelete="CASCADE"), index=True, nullable=False
    )
    bonus_id: Mapped[int] = mapped_column(ForeignKey("bonuses.id"), index=True, nullable=False)
    covered_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
