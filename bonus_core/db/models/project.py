from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from bonus_core.core.time import utcnow
from bonus_core.db.base import Base

ROLE_AGENT = "agent"
ROLE_CURATOR = "curator"


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # legacy direct assignment, used only when project_user has no agent row
    agent_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class ProjectUser(Base):
    """Who works a project: one agent and optionally a curator."""

    __tablename__ = "project_user"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    # agent | curator
    role: Mapped[str] = mapped_column(String(16), server_default=ROLE_AGENT, nullable=False)
