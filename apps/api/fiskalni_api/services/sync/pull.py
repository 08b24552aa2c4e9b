from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from typing import Any

from pydantic.alias_generators import to_camel
from sqlalchemy import select

from fiskalni_api.core.config import settings
from fiskalni_api.db.session import SyncStore
from fiskalni_api.schemas.sync import PULL_COLLECTIONS, SyncPullCounts, SyncPullMeta, SyncPullResponse
from fiskalni_api.services.sync.handlers import HANDLERS, EntityHandler

_HIDDEN_COLUMNS = {"user_id"}


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


def _wire_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return _as_utc(value).isoformat().replace("+00:00", "Z")
    if isinstance(value, date):
        return value.isoformat()
    return value


def serialize_row(handler: EntityHandler, row: Any) -> dict[str, Any]:
    """Render a stored row the way clients keep it locally (camelCase, ``syncStatus``)."""
    fields = handler.payload_schema.model_fields
    values = row._mapping
    out: dict[str, Any] = {}
    for column in handler.table.columns:
        if column.name in _HIDDEN_COLUMNS:
            continue
        field_info = fields.get(column.name)
        key = field_info.alias if field_info is not None and field_info.alias else to_camel(column.name)
        out[key] = _wire_value(values[column.name])
    out["syncStatus"] = "synced"
    return out


async def pull_changes(
    store: SyncStore,
    user_id: str,
    since: datetime | None = None,
    *,
    overlap: timedelta | None = None,
) -> SyncPullResponse:
    """Return live rows, or every row written after ``since`` including tombstones.

    ``updated_at`` is stamped before its transaction commits, so a write can
    become visible after a pull whose ``pulledAt`` is already later than its
    stamp. Delta pulls therefore reach back ``overlap`` before ``since``; rows
    the client already holds come back with an unchanged ``updatedAt`` and are
    dropped by its last-writer-wins check.
    """
    pulled_at = datetime.now(UTC)
    if overlap is None:
        overlap = timedelta(seconds=settings.sync_pull_overlap_seconds)
    data: dict[str, list[dict[str, Any]]] = {}
    async with store.session() as session:
        for entity_type, handler in HANDLERS.items():
            collection = PULL_COLLECTIONS[entity_type.value]
            table = handler.table
            query = select(table).where(table.c.user_id == user_id)
            if since is None:
                query = query.where(table.c.deleted_at.is_(None))
            else:
                query = query.where(table.c.updated_at > _as_utc(since) - overlap)
            rows = (await session.execute(query.order_by(table.c.updated_at, table.c.id))).all()
            data[collection] = [serialize_row(handler, row) for row in rows]

    return SyncPullResponse(
        data=data,
        meta=SyncPullMeta(
            pulledAt=pulled_at,
            since=since,
            counts=SyncPullCounts(**{collection: len(rows) for collection, rows in data.items()}),
        ),
    )
