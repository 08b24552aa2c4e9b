from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, ClassVar

import pydantic
from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fiskalni_api.core.exceptions import AppError, ConflictError, ValidationError
from fiskalni_api.db.session import SyncStore
from fiskalni_api.models import (
    Device,
    Document,
    EntityType,
    HouseholdBill,
    Receipt,
    Reminder,
    Subscription,
    SyncedEntityMixin,
)
from fiskalni_api.schemas.entities import (
    DevicePayload,
    DocumentPayload,
    HouseholdBillPayload,
    ReceiptPayload,
    ReminderPayload,
    SubscriptionPayload,
    SyncPayload,
)

logger = logging.getLogger("fiskalni.api.sync.handlers")

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass(frozen=True)
class ItemResult:
    entity_type: str
    entity_id: str
    operation: str
    error: str | None = None
    updated_at: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def describe(self) -> str:
        return f"{self.entity_type}/{self.entity_id}: {self.error}"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _format_validation_error(entity_type: EntityType, exc: pydantic.ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return f"Invalid {entity_type.value} data: " + "; ".join(problems)


class EntityHandler:
    """Create/update (idempotent upsert) and delete for one entity kind.

    Rows are keyed on the caller-assigned entity id and always scoped to the
    authenticated owner. Deletes are soft: the row keeps a ``deleted_at``
    tombstone so devices that were offline learn about the removal on their
    next pull.
    """

    entity_type: ClassVar[EntityType]
    model: ClassVar[type[SyncedEntityMixin]]
    payload_schema: ClassVar[type[SyncPayload]]
    required_fields: ClassVar[tuple[str, ...]] = ()
    insert_defaults: ClassVar[dict[str, Any]] = {}

    @property
    def table(self) -> Any:
        return self.model.__table__  # type: ignore[attr-defined]

    def parse(self, data: dict[str, Any]) -> dict[str, Any]:
        try:
            payload = self.payload_schema.model_validate(data)
        except pydantic.ValidationError as exc:
            raise ValidationError(_format_validation_error(self.entity_type, exc)) from exc
        return payload.model_dump(exclude_unset=True)

    def _aliases(self, field_names: list[str]) -> list[str]:
        fields = self.payload_schema.model_fields
        return [fields[name].alias or name for name in field_names]

    async def upsert(self, session: AsyncSession, user_id: str, entity_id: str, data: dict[str, Any]) -> datetime:
        values = self.parse(data)
        created_at = values.pop("created_at", None)
        now = _utcnow()
        missing = [name for name in self.required_fields if name not in values]

        if missing:
            # A partial payload can only patch a row the caller already owns.
            result = await session.execute(
                update(self.table)
                .where(self.table.c.id == entity_id, self.table.c.user_id == user_id)
                .values(**values, updated_at=now, deleted_at=None),
            )
            if result.rowcount:
                return now
            await self._raise_if_foreign(session, user_id, entity_id)
            raise ValidationError(f"Missing required field(s): {', '.join(self._aliases(missing))}")

        insert = _UPSERT_DIALECTS[session.get_bind().dialect.name]
        row = {
            **self.insert_defaults,
            **values,
            "id": entity_id,
            "user_id": user_id,
            "created_at": created_at or now,
            "updated_at": now,
            "deleted_at": None,
        }
        stmt = insert(self.table).values(**row)
        stmt = stmt.on_conflict_do_update(
            index_elements=[self.table.c.id],
            set_={**values, "updated_at": now, "deleted_at": None},
            where=self.table.c.user_id == stmt.excluded.user_id,
        )
        result = await session.execute(stmt)
        if not result.rowcount:
            raise ConflictError(f"{self.entity_type.value} {entity_id} belongs to another user")
        return now

    async def delete(self, session: AsyncSession, user_id: str, entity_id: str) -> datetime | None:
        """Tombstone the row. Returns the write time, or ``None`` when nothing changed."""
        now = _utcnow()
        result = await session.execute(
            update(self.table)
            .where(
                self.table.c.id == entity_id,
                self.table.c.user_id == user_id,
                self.table.c.deleted_at.is_(None),
            )
            .values(deleted_at=now, updated_at=now),
        )
        await self.cascade_delete(session, user_id, entity_id, now)
        return now if result.rowcount else None

    async def cascade_delete(self, session: AsyncSession, user_id: str, entity_id: str, now: datetime) -> None:
        return None

    async def _raise_if_foreign(self, session: AsyncSession, user_id: str, entity_id: str) -> None:
        owner = await session.scalar(select(self.table.c.user_id).where(self.table.c.id == entity_id))
        if owner is not None and owner != user_id:
            raise ConflictError(f"{self.entity_type.value} {entity_id} belongs to another user")

    async def apply(
        self,
        store: SyncStore,
        user_id: str,
        entity_id: str,
        operation: str,
        data: dict[str, Any] | None,
    ) -> ItemResult:
        """Run one sync operation in its own transaction and report the outcome."""
        kind = self.entity_type.value
        updated_at: datetime | None
        try:
            async with store.transaction() as session:
                if operation == "delete":
                    updated_at = await self.delete(session, user_id, entity_id)
                elif data is None:
                    raise ValidationError("Data is required")
                else:
                    updated_at = await self.upsert(session, user_id, entity_id, data)
        except AppError as exc:
            return ItemResult(kind, entity_id, operation, error=exc.message)
        except SQLAlchemyError as exc:
            logger.exception(
                "sync.item.store_error",
                extra={"user_id": user_id, "entity_type": kind, "entity_id": entity_id},
            )
            return ItemResult(kind, entity_id, operation, error=f"Storage error: {type(exc).__name__}")
        return ItemResult(kind, entity_id, operation, updated_at=updated_at)


class ReceiptHandler(EntityHandler):
    entity_type = EntityType.RECEIPT
    model = Receipt
    payload_schema = ReceiptPayload
    required_fields = ("merchant_name", "total_amount")


class DeviceHandler(EntityHandler):
    entity_type = EntityType.DEVICE
    model = Device
    payload_schema = DevicePayload
    required_fields = ("brand", "model")
    insert_defaults = {"status": "active"}

    async def cascade_delete(self, session: AsyncSession, user_id: str, entity_id: str, now: datetime) -> None:
        # Warranty reminders make no sense without their device.
        await session.execute(
            update(Reminder.__table__)
            .where(
                Reminder.__table__.c.device_id == entity_id,
                Reminder.__table__.c.user_id == user_id,
                Reminder.__table__.c.deleted_at.is_(None),
            )
            .values(deleted_at=now, updated_at=now),
        )


class HouseholdBillHandler(EntityHandler):
    entity_type = EntityType.HOUSEHOLD_BILL
    model = HouseholdBill
    payload_schema = HouseholdBillPayload
    required_fields = ("bill_type", "provider", "amount")
    insert_defaults = {"status": "pending"}


class ReminderHandler(EntityHandler):
    entity_type = EntityType.REMINDER
    model = Reminder
    payload_schema = ReminderPayload
    required_fields = ("device_id", "type", "days_before_expiry")
    insert_defaults = {"status": "pending"}


class SubscriptionHandler(EntityHandler):
    entity_type = EntityType.SUBSCRIPTION
    model = Subscription
    payload_schema = SubscriptionPayload
    required_fields = ("name", "provider", "amount", "billing_cycle")
    insert_defaults = {"is_active": True, "reminder_days": 3}


class DocumentHandler(EntityHandler):
    entity_type = EntityType.DOCUMENT
    model = Document
    payload_schema = DocumentPayload
    required_fields = ("type", "name")


HANDLERS: dict[EntityType, EntityHandler] = {
    handler.entity_type: handler
    for handler in (
        ReceiptHandler(),
        DeviceHandler(),
        HouseholdBillHandler(),
        ReminderHandler(),
        SubscriptionHandler(),
        DocumentHandler(),
    )
}

_unhandled = set(EntityType) - set(HANDLERS)
if _unhandled:
    raise RuntimeError(f"No sync handler for entity type(s): {sorted(kind.value for kind in _unhandled)}")


def resolve_handler(entity_type: str, handlers: dict[EntityType, EntityHandler] | None = None) -> EntityHandler | None:
    try:
        kind = EntityType(entity_type)
    except ValueError:
        return None
    return (handlers if handlers is not None else HANDLERS).get(kind)
