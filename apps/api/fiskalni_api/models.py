from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, declared_attr, mapped_column
from sqlalchemy.sql import func

from fiskalni_api.db.base import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(12, 2, asdecimal=False)


class EntityType(str, Enum):
    RECEIPT = "receipt"
    DEVICE = "device"
    HOUSEHOLD_BILL = "householdBill"
    REMINDER = "reminder"
    SUBSCRIPTION = "subscription"
    DOCUMENT = "document"


class SyncOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class DeviceStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    IN_SERVICE = "in_service"


class BillStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class ReminderChannel(str, Enum):
    EMAIL = "email"
    PUSH = "push"
    SMS = "sms"


class ReminderStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class BillingCycle(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class AuthSession(Base):
    __tablename__ = "auth_sessions"
    __table_args__ = (Index("ix_auth_sessions_token_hash", "token_hash", unique=True),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class SyncedEntityMixin:
    """Columns shared by every entity kind the sync protocol writes."""

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    @declared_attr
    def user_id(cls) -> Mapped[str]:
        return mapped_column(ForeignKey("users.id"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)


class Receipt(SyncedEntityMixin, Base):
    __tablename__ = "receipts"
    __table_args__ = (
        Index("ix_receipts_user_id_updated_at", "user_id", "updated_at"),
        Index("ix_receipts_user_id_receipt_date", "user_id", "receipt_date"),
    )

    merchant_name: Mapped[str] = mapped_column(String(255), nullable=False)
    pib: Mapped[str | None] = mapped_column(String(20), nullable=True)
    receipt_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    time: Mapped[str | None] = mapped_column(String(10), nullable=True)
    total_amount: Mapped[float] = mapped_column(Money, nullable=False)
    vat_amount: Mapped[float | None] = mapped_column(Money, nullable=True)
    items: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    qr_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    pdf_url: Mapped[str | None] = mapped_column(Text, nullable=True)


class Device(SyncedEntityMixin, Base):
    __tablename__ = "devices"
    __table_args__ = (
        Index("ix_devices_user_id_updated_at", "user_id", "updated_at"),
        Index("ix_devices_user_id_warranty_expiry", "user_id", "warranty_expiry"),
    )

    receipt_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    brand: Mapped[str] = mapped_column(String(100), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    serial_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    purchase_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    warranty_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    warranty_expiry: Mapped[date | None] = mapped_column(Date, nullable=True)
    warranty_terms: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=DeviceStatus.ACTIVE.value)
    service_center_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    service_center_address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    service_center_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    service_center_hours: Mapped[str | None] = mapped_column(String(255), nullable=True)
    attachments: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)


class HouseholdBill(SyncedEntityMixin, Base):
    __tablename__ = "household_bills"
    __table_args__ = (
        Index("ix_household_bills_user_id_updated_at", "user_id", "updated_at"),
        Index("ix_household_bills_user_id_due_date", "user_id", "due_date"),
    )

    bill_type: Mapped[str] = mapped_column(String(50), nullable=False)
    provider: Mapped[str] = mapped_column(String(255), nullable=False)
    account_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    amount: Mapped[float] = mapped_column(Money, nullable=False)
    billing_period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    billing_period_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BillStatus.PENDING.value)
    consumption: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class Reminder(SyncedEntityMixin, Base):
    __tablename__ = "reminders"
    __table_args__ = (
        Index("ix_reminders_user_id_updated_at", "user_id", "updated_at"),
        Index("ix_reminders_device_id", "device_id"),
    )

    # No foreign key: a batch may carry the reminder before its device.
    device_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    days_before_expiry: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ReminderStatus.PENDING.value)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Subscription(SyncedEntityMixin, Base):
    __tablename__ = "subscriptions"
    __table_args__ = (Index("ix_subscriptions_user_id_updated_at", "user_id", "updated_at"),)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    amount: Mapped[float] = mapped_column(Money, nullable=False)
    billing_cycle: Mapped[str] = mapped_column(String(20), nullable=False)
    next_billing_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    cancel_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    login_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reminder_days: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    logo_url: Mapped[str | None] = mapped_column(Text, nullable=True)


class Document(SyncedEntityMixin, Base):
    __tablename__ = "documents"
    __table_args__ = (Index("ix_documents_user_id_updated_at", "user_id", "updated_at"),)

    type: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expiry_reminder_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
