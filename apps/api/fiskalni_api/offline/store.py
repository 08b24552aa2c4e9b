from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class SyncStatus(str, Enum):
    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"


ALLOWED_TRANSITIONS: frozenset[tuple[SyncStatus, SyncStatus]] = frozenset(
    {
        (SyncStatus.PENDING, SyncStatus.SYNCED),
        (SyncStatus.PENDING, SyncStatus.ERROR),
        (SyncStatus.SYNCED, SyncStatus.PENDING),
        (SyncStatus.ERROR, SyncStatus.PENDING),
    },
)

RecordKey = tuple[str, str]


class InvalidSyncTransition(Exception):
    def __init__(self, key: RecordKey, current: SyncStatus, target: SyncStatus) -> None:
        super().__init__(f"{key[0]}/{key[1]}: cannot move from {current.value} to {target.value}")
        self.key = key
        self.current = current
        self.target = target


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class LocalRecord:
    entity_type: str
    entity_id: str
    data: dict[str, Any]
    sync_status: SyncStatus
    created_at: datetime
    updated_at: datetime
    retry_count: int = 0
    last_error: str | None = None
    deleted: bool = False

    @property
    def key(self) -> RecordKey:
        return (self.entity_type, self.entity_id)


@dataclass
class LocalOfflineStore:
    """In-memory stand-in for the device's local database.

    Every status change goes through :meth:`transition`, which enforces the
    record state machine (``pending -> synced|error``, ``synced -> pending``,
    ``error -> pending``).
    """

    records: dict[RecordKey, LocalRecord] = field(default_factory=dict)

    def get(self, entity_type: str, entity_id: str) -> LocalRecord | None:
        return self.records.get((entity_type, entity_id))

    def require(self, key: RecordKey) -> LocalRecord:
        record = self.records.get(key)
        if record is None:
            raise KeyError(f"{key[0]}/{key[1]} is not stored locally")
        return record

    def by_status(self, status: SyncStatus) -> list[LocalRecord]:
        return [record for record in self.records.values() if record.sync_status is status]

    def transition(self, key: RecordKey, target: SyncStatus) -> LocalRecord:
        record = self.require(key)
        if record.sync_status is target:
            return record
        if (record.sync_status, target) not in ALLOWED_TRANSITIONS:
            raise InvalidSyncTransition(key, record.sync_status, target)
        record.sync_status = target
        return record

    def write_local(
        self,
        entity_type: str,
        entity_id: str,
        data: dict[str, Any],
        *,
        deleted: bool = False,
        now: datetime | None = None,
    ) -> LocalRecord:
        now = now or _utcnow()
        key = (entity_type, entity_id)
        record = self.records.get(key)
        if record is None:
            record = LocalRecord(
                entity_type=entity_type,
                entity_id=entity_id,
                data=dict(data),
                sync_status=SyncStatus.PENDING,
                created_at=now,
                updated_at=now,
                deleted=deleted,
            )
            self.records[key] = record
            return record
        self.transition(key, SyncStatus.PENDING)
        record.data = {**record.data, **data}
        record.updated_at = now
        record.deleted = deleted
        return record

    def mark_synced(self, key: RecordKey, *, updated_at: datetime | None = None) -> LocalRecord:
        record = self.transition(key, SyncStatus.SYNCED)
        record.retry_count = 0
        record.last_error = None
        if updated_at is not None:
            record.updated_at = updated_at
        return record

    def mark_error(self, key: RecordKey, message: str) -> LocalRecord:
        record = self.transition(key, SyncStatus.ERROR)
        record.last_error = message
        return record

    def note_retry(self, key: RecordKey, message: str) -> LocalRecord:
        record = self.require(key)
        record.retry_count += 1
        record.last_error = message
        return record

    def apply_remote(self, entity_type: str, entity_id: str, data: dict[str, Any], updated_at: datetime) -> LocalRecord:
        """Store a server copy. Only valid for absent or already synced records."""
        key = (entity_type, entity_id)
        record = self.records.get(key)
        if record is None:
            record = LocalRecord(
                entity_type=entity_type,
                entity_id=entity_id,
                data=dict(data),
                sync_status=SyncStatus.SYNCED,
                created_at=updated_at,
                updated_at=updated_at,
            )
            self.records[key] = record
            return record
        if record.sync_status is not SyncStatus.SYNCED:
            raise InvalidSyncTransition(key, record.sync_status, SyncStatus.SYNCED)
        record.data = dict(data)
        record.updated_at = updated_at
        record.deleted = False
        return record

    def remove(self, key: RecordKey) -> LocalRecord | None:
        return self.records.pop(key, None)
