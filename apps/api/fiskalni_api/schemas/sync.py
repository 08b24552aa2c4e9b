from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# Entity type -> collection name used by pull responses and local stores.
PULL_COLLECTIONS: dict[str, str] = {
    "receipt": "receipts",
    "device": "devices",
    "householdBill": "householdBills",
    "reminder": "reminders",
    "subscription": "subscriptions",
    "document": "documents",
}


class SyncItem(BaseModel):
    """One operation of a batch.

    ``entityType`` and ``operation`` stay plain strings here: an unknown value
    is a per-item failure, not a malformed batch.
    """

    model_config = ConfigDict(extra="ignore")

    entityType: str
    entityId: str = Field(min_length=1, max_length=64)
    operation: str
    data: dict[str, Any] | None = None


class SyncBatchRequest(BaseModel):
    items: list[SyncItem]


class ChangeEvent(BaseModel):
    entityType: str
    entityId: str
    operation: str
    updatedAt: datetime


class SyncBatchResponse(BaseModel):
    success: int
    failed: int
    total: int
    errors: list[str]
    # Server write time of every item that changed a row, in request order.
    applied: list[ChangeEvent] = Field(default_factory=list)


class SyncPullCounts(BaseModel):
    receipts: int = 0
    devices: int = 0
    householdBills: int = 0
    reminders: int = 0
    subscriptions: int = 0
    documents: int = 0


class SyncPullMeta(BaseModel):
    pulledAt: datetime
    since: datetime | None = None
    counts: SyncPullCounts


class SyncPullResponse(BaseModel):
    success: bool = True
    data: dict[str, list[dict[str, Any]]]
    meta: SyncPullMeta
