from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from bonus_core.core.time import utcnow
from bonus_core.db.base import Base

AGENT_PAYMENT_PENDING = "pending"
AGENT_PAYMENT_COMPLETED = "completed"
AGENT_PAYMENT_FAILED = "failed"


class AgentPayment(Base):
    """Payment made to an agent for an explicit set of bonuses, whole rows only."""

    __tablename__ = "agent_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agent_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    # card | sbp | other
    payment_method: Mapped[str] = mapped_column(String(16), nullable=False)
    # bank document number, if any
    reference_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # pending -> completed | failed
    status: Mapped[str] = mapped_column(
        String(16), server_default=AGENT_PAYMENT_PENDING, default=AGENT_PAYMENT_PENDING, nullable=False
    )
    payment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=utcnow, nullable=True)


class AgentPaymentBonus(Base):
    __tablename__ = "agent_payment_bonuses"
    __table_args__ = (UniqueConstraint("payment_id", "bonus_id", name="uq_agent_payment_bonuses_payment_bonus"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    payment_id: Mapped[int] = mapped_column(
        ForeignKey("agent_payments.id", ondelete="CASCADE"), index=True, nullable=False
    )
    bonus_id: Mapped[int] = mapped_column(ForeignKey("bonuses.id"), index=True, nullable=False)
