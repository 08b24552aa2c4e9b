from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete

from fiskalni_api.core.config import settings
from fiskalni_api.db.session import SyncStore
from fiskalni_api.models import AuthSession
from fiskalni_api.services.sync.handlers import HANDLERS

logger = logging.getLogger("fiskalni.api.jobs.purge")


async def purge_tombstones(
    store: SyncStore,
    *,
    retention_days: int | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    """Hard-delete tombstones past the retention window and expired sessions.

    Returns the number of removed rows per table.
    """
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(days=retention_days or settings.tombstone_retention_days)
    removed: dict[str, int] = {}
    async with store.transaction() as session:
        for handler in HANDLERS.values():
            table = handler.table
            result = await session.execute(
                delete(table).where(table.c.deleted_at.is_not(None), table.c.deleted_at < cutoff),
            )
            removed[table.name] = int(result.rowcount or 0)
        result = await session.execute(delete(AuthSession).where(AuthSession.expires_at <= now))
        removed[AuthSession.__tablename__] = int(result.rowcount or 0)

    logger.info("jobs.purge_tombstones.completed", extra={"result": removed})
    return removed
