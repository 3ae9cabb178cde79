from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from bonus_core.core.time import utcnow
from bonus_core.db.base import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # ==========================
    # Referrals
    # ==========================
    # Personal public key handed out to invitees.
    referral_key: Mapped[str | None] = mapped_column(String(64), unique=True, index=True, nullable=True)
    # Key of whoever invited this user (must match somebody's referral_key).
    referred_by_key: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)

    # registration date; the referral program window counts from here
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
