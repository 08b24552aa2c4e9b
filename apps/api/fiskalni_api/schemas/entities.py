from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _coerce_date(value: Any) -> Any:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.astimezone(UTC).date() if value.tzinfo else value.date()
    if isinstance(value, str) and "T" in value:
        return value.split("T", 1)[0]
    return value


def _coerce_timestamp(value: Any) -> Any:
    if value == "":
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    return value


def _ensure_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# Domain dates arrive as dates, ISO dates or full ISO timestamps; only the calendar day is kept.
SyncDate = Annotated[date | None, BeforeValidator(_coerce_date)]
SyncTimestamp = Annotated[datetime | None, BeforeValidator(_coerce_timestamp), AfterValidator(_ensure_utc)]
Url = Annotated[str, Field(max_length=2048)]


class SyncPayload(BaseModel):
    """Base for entity payloads carried in ``SyncItem.data``.

    Every field is optional at this level so partial updates validate; the
    fields an insert cannot do without are enforced by the entity handler.
    Explicit ``null`` for a non-nullable field is still rejected.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    created_at: SyncTimestamp = None


class ReceiptLineItem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    name: str
    quantity: float | None = None
    unit_price: float | None = None
    total_price: float | None = None


class ReceiptPayload(SyncPayload):
    merchant_name: str = Field(None, min_length=1, max_length=255)
    pib: str | None = Field(None, max_length=20)
    receipt_date: SyncDate = Field(None, alias="date")
    time: str | None = Field(None, max_length=10)
    total_amount: float = Field(None, ge=0)
    vat_amount: float | None = Field(None, ge=0)
    items: list[dict[str, Any]] | None = None
    category: str | None = Field(None, max_length=50)
    tags: list[str] | None = None
    notes: str | None = Field(None, max_length=1000)
    qr_link: Url | None = None
    image_url: Url | None = None
    pdf_url: Url | None = None

    @field_validator("items")
    @classmethod
    def _normalize_items(cls, value: list[dict[str, Any]] | None) -> list[dict[str, Any]] | None:
        if value is None:
            return None
        return [
            ReceiptLineItem.model_validate(item).model_dump(by_alias=True, exclude_none=True)
            for item in value
        ]


class DevicePayload(SyncPayload):
    receipt_id: str | None = Field(None, max_length=64)
    brand: str = Field(None, min_length=1, max_length=100)
    model: str = Field(None, min_length=1, max_length=100)
    category: str | None = Field(None, max_length=50)
    serial_number: str | None = Field(None, max_length=100)
    image_url: Url | None = None
    purchase_date: SyncDate = None
    warranty_duration: int | None = Field(None, ge=0, le=120)
    warranty_expiry: SyncDate = None
    warranty_terms: str | None = Field(None, max_length=2000)
    status: Literal["active", "expired", "in_service"] = None
    service_center_name: str | None = Field(None, max_length=255)
    service_center_address: str | None = Field(None, max_length=500)
    service_center_phone: str | None = Field(None, max_length=50)
    service_center_hours: str | None = Field(None, max_length=255)
    attachments: list[Url] | None = None
    tags: list[str] | None = None


class Consumption(BaseModel):
    model_config = ConfigDict(extra="ignore")

    value: float | None = None
    unit: str | None = None


class HouseholdBillPayload(SyncPayload):
    bill_type: str = Field(None, min_length=1, max_length=50)
    provider: str = Field(None, min_length=1, max_length=255)
    account_number: str | None = Field(None, max_length=50)
    amount: float = Field(None, ge=0)
    billing_period_start: SyncDate = None
    billing_period_end: SyncDate = None
    due_date: SyncDate = None
    payment_date: SyncDate = None
    status: Literal["pending", "paid", "overdue"] = None
    consumption: dict[str, Any] | None = None
    notes: str | None = Field(None, max_length=1000)

    @field_validator("consumption")
    @classmethod
    def _normalize_consumption(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        if value is None:
            return None
        return Consumption.model_validate(value).model_dump(exclude_none=True)


class ReminderPayload(SyncPayload):
    device_id: str = Field(None, min_length=1, max_length=64)
    type: Literal["email", "push", "sms"] = None
    days_before_expiry: int = Field(None, ge=1, le=365)
    status: Literal["pending", "sent", "failed"] = None
    sent_at: SyncTimestamp = None


class SubscriptionPayload(SyncPayload):
    name: str = Field(None, min_length=1, max_length=255)
    provider: str = Field(None, min_length=1, max_length=255)
    category: str | None = Field(None, max_length=50)
    amount: float = Field(None, ge=0)
    billing_cycle: Literal["weekly", "monthly", "quarterly", "yearly"] = None
    next_billing_date: SyncDate = None
    start_date: SyncDate = None
    cancel_url: Url | None = None
    login_url: Url | None = None
    notes: str | None = Field(None, max_length=1000)
    is_active: bool = None
    reminder_days: int = Field(None, ge=0, le=365)
    logo_url: Url | None = None


class DocumentPayload(SyncPayload):
    type: str = Field(None, min_length=1, max_length=50)
    name: str = Field(None, min_length=1, max_length=255)
    file_url: Url | None = None
    thumbnail_url: Url | None = None
    expiry_date: SyncDate = None
    expiry_reminder_days: int | None = Field(None, ge=0, le=365)
    notes: str | None = Field(None, max_length=1000)
    tags: list[str] | None = None
