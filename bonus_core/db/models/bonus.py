from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from bonus_core.core.errors import BonusSourceError
from bonus_core.core.time import utcnow
from bonus_core.db.base import Base
from bonus_core.db.models.deal import Contract, Order

RECIPIENT_AGENT = "agent"
RECIPIENT_CURATOR = "curator"
RECIPIENT_REFERRER = "referrer"

STATUS_ACCRUED = "accrued"
STATUS_AVAILABLE = "available_for_payment"
STATUS_PAID = "paid"


class Bonus(Base):
    """Commission line owed to one recipient for one deal.

    accrued -> available_for_payment -> paid, derived from the timestamps.
    """

    __tablename__ = "bonuses"
    __table_args__ = (
        CheckConstraint("(contract_id IS NULL) <> (order_id IS NULL)", name="single_source"),
        CheckConstraint("commission_amount >= 0", name="amount_non_negative"),
        Index("ix_bonuses_user_id_accrued_at", "user_id", "accrued_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # recipient
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)

    # exactly one of these is set
    contract_id: Mapped[int | None] = mapped_column(ForeignKey("contracts.id"), index=True, nullable=True)
    order_id: Mapped[int | None] = mapped_column(ForeignKey("orders.id"), index=True, nullable=True)

    commission_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    # agent | curator | referrer
    recipient_type: Mapped[str] = mapped_column(String(16), nullable=False)
    # for referrer bonuses: the referred agent whose deal produced it
    referral_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), index=True, nullable=True)

    accrued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    available_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=utcnow, nullable=True)

    @classmethod
    def for_deal(
        cls,
        deal: Contract | Order,
        *,
        user_id: int,
        recipient_type: str,
        commission_amount: Decimal,
        percentage: Decimal,
        referral_user_id: int | None = None,
        accrued_at: datetime | None = None,
    ) -> "Bonus":
        if isinstance(deal, Contract):
            contract_id, order_id = deal.id, None
        elif isinstance(deal, Order):
            contract_id, order_id = None, deal.id
        else:
            raise BonusSourceError(f"unsupported deal type: {type(deal).__name__}")
        if deal.id is None:
            raise BonusSourceError("deal must be flushed before bonuses are attached")

        return cls(
            user_id=user_id,
            contract_id=contract_id,
            order_id=order_id,
            commission_amount=commission_amount,
            percentage=percentage,
            recipient_type=recipient_type,
            referral_user_id=referral_user_id,
            accrued_at=accrued_at or utcnow(),
            available_at=None,
            paid_at=None,
        )

    def clone_remainder(self, amount: Decimal) -> "Bonus":
        """Unpaid sibling carrying `amount`, keeping its place in the FIFO queue."""
        return Bonus(
            user_id=self.user_id,
            contract_id=self.contract_id,
            order_id=self.order_id,
            commission_amount=amount,
            percentage=self.percentage,
            recipient_type=self.recipient_type,
            referral_user_id=self.referral_user_id,
            accrued_at=self.accrued_at,
            available_at=self.available_at,
            paid_at=None,
        )

    @property
    def source_type(self) -> str:
        return "contract" if self.contract_id is not None else "order"

    @property
    def status(self) -> str:
        if self.paid_at is not None:
            return STATUS_PAID
        if self.available_at is not None:
            return STATUS_AVAILABLE
        return STATUS_ACCRUED

    def __repr__(self) -> str:
        return (
            f"<Bonus(id={self.id}, user={self.user_id}, {self.source_type}="
            f"{self.contract_id or self.order_id}, amount={self.commission_amount}, status={self.status})>"
        )
