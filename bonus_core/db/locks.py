from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from bonus_core.core.config import settings

log = logging.getLogger(__name__)


def _dialect_name(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


async def lock_recipient(session: AsyncSession, user_id: int) -> None:
    """Serialize payout linking/settlement for one recipient.

    Transaction-scoped: released on commit or rollback.
    SQLite has a single writer anyway, so there it is a no-op.
    """
    if _dialect_name(session) != "postgresql":
        log.debug("recipient_lock_skipped", extra={"user_id": user_id})
        return
    await session.execute(
        text("SELECT pg_advisory_xact_lock(:ns, :k)"),
        {"ns": settings.bonus_lock_namespace, "k": int(user_id)},
    )
