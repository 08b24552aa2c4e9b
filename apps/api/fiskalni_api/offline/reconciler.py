from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from fiskalni_api.offline.broadcast import BroadcastChannel, BroadcastMessage, entity_message
from fiskalni_api.offline.store import LocalOfflineStore, LocalRecord, RecordKey, SyncStatus
from fiskalni_api.offline.transport import SyncRejectedError, SyncTransport, SyncTransportError
from fiskalni_api.schemas.sync import PULL_COLLECTIONS, ChangeEvent, SyncBatchResponse, SyncPullResponse

logger = logging.getLogger("fiskalni.offline.reconciler")

_OPERATIONS = ("create", "update", "delete")
_ENTITY_TYPES_BY_COLLECTION = {collection: entity_type for entity_type, collection in PULL_COLLECTIONS.items()}


class RemoteChangeOutcome(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    DEFERRED = "deferred"
    FETCH_REQUIRED = "fetch_required"


@dataclass
class QueuedOperation:
    entity_type: str
    entity_id: str
    operation: str
    version: int
    retry_count: int = 0
    last_error: str | None = None

    @property
    def key(self) -> RecordKey:
        return (self.entity_type, self.entity_id)


@dataclass
class FlushReport:
    sent: int = 0
    synced: list[RecordKey] = field(default_factory=list)
    failed: dict[RecordKey, str] = field(default_factory=dict)
    retained: list[RecordKey] = field(default_factory=list)
    transport_error: str | None = None


def parse_error_key(message: str) -> tuple[RecordKey, str] | None:
    """Split ``"<entityType>/<entityId>: <detail>"`` into its key and detail."""
    head, separator, detail = message.partition(": ")
    if not separator:
        return None
    entity_type, slash, entity_id = head.partition("/")
    if not slash or not entity_type or not entity_id:
        return None
    return (entity_type, entity_id), detail


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


class SyncReconciler:
    """Keeps a local store consistent with the server.

    Local edits are written optimistically as ``pending`` and queued; one
    queued operation is kept per entity so a batch never carries two
    operations on the same id. Remote notifications follow last-writer-wins
    on ``updatedAt`` but never overwrite an unconfirmed local edit: they are
    held back until the edit is confirmed or discarded.
    """

    def __init__(
        self,
        store: LocalOfflineStore,
        transport: SyncTransport,
        *,
        broadcast: BroadcastChannel | None = None,
        batch_size: int = 50,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.transport = transport
        self.broadcast = broadcast
        self.batch_size = max(1, batch_size)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._versions = itertools.count(1)
        self._queue: dict[RecordKey, QueuedOperation] = {}
        self._failed: dict[RecordKey, QueuedOperation] = {}
        self._deferred: dict[RecordKey, tuple[ChangeEvent, dict[str, Any] | None]] = {}

    def pending_operations(self) -> list[QueuedOperation]:
        return list(self._queue.values())

    def failed_operations(self) -> list[QueuedOperation]:
        return list(self._failed.values())

    def has_deferred(self, entity_type: str, entity_id: str) -> bool:
        return (entity_type, entity_id) in self._deferred

    def record_local_change(
        self,
        entity_type: str,
        entity_id: str,
        operation: str,
        data: dict[str, Any] | None = None,
    ) -> LocalRecord:
        if operation not in _OPERATIONS:
            raise ValueError(f"Unsupported operation: {operation}")
        if operation != "delete" and data is None:
            raise ValueError("Data is required")

        record = self.store.write_local(
            entity_type,
            entity_id,
            data or {},
            deleted=operation == "delete",
            now=self._clock(),
        )
        self._failed.pop(record.key, None)
        self._enqueue(record.key, operation)
        self._post(entity_message(entity_type, operation, entity_id))
        return record

    def _enqueue(self, key: RecordKey, operation: str, *, retry_count: int | None = None) -> QueuedOperation:
        existing = self._queue.get(key)
        if existing is not None and existing.operation == "create" and operation == "update":
            operation = "create"
        if retry_count is None:
            retry_count = existing.retry_count if existing is not None else 0
        entry = QueuedOperation(
            entity_type=key[0],
            entity_id=key[1],
            operation=operation,
            version=next(self._versions),
            retry_count=retry_count,
        )
        self._queue[key] = entry
        return entry

    def _wire_item(self, entry: QueuedOperation) -> dict[str, Any]:
        item: dict[str, Any] = {
            "entityType": entry.entity_type,
            "entityId": entry.entity_id,
            "operation": entry.operation,
        }
        if entry.operation != "delete":
            record = self.store.require(entry.key)
            data = dict(record.data)
            data.setdefault("createdAt", record.created_at.isoformat())
            item["data"] = data
        return item

    async def flush(self) -> FlushReport:
        """Send queued operations and settle local state from the batch result.

        ``SyncAuthError`` propagates and leaves every operation queued.
        """
        report = FlushReport()
        entries = list(self._queue.values())
        for start in range(0, len(entries), self.batch_size):
            chunk = entries[start : start + self.batch_size]
            items = [self._wire_item(entry) for entry in chunk]
            try:
                result = await self.transport.send_batch(items)
            except SyncTransportError as exc:
                report.transport_error = str(exc)
                self._note_transport_failure(chunk, str(exc), report)
                report.retained.extend(entry.key for entry in entries[start + self.batch_size :])
                logger.warning("offline.flush.deferred", extra={"batch_total": len(items), "result": str(exc)})
                break
            except SyncRejectedError as exc:
                report.sent += len(chunk)
                for entry in chunk:
                    if self._is_current(entry):
                        self._fail(entry, str(exc), report)
                    else:
                        report.retained.append(entry.key)
                continue
            report.sent += len(chunk)
            self._settle(chunk, result, report)

        if report.sent and report.transport_error is None:
            self._post(
                BroadcastMessage(
                    type="sync-completed",
                    payload={"timestamp": int(self._clock().timestamp() * 1000)},
                ),
            )
        return report

    def _note_transport_failure(self, entries: list[QueuedOperation], message: str, report: FlushReport) -> None:
        for entry in entries:
            entry.retry_count += 1
            entry.last_error = message
            if self.store.get(*entry.key) is not None:
                self.store.note_retry(entry.key, message)
            report.retained.append(entry.key)

    def _settle(self, chunk: list[QueuedOperation], result: SyncBatchResponse, report: FlushReport) -> None:
        named: dict[RecordKey, str] = {}
        for message in result.errors:
            parsed = parse_error_key(message)
            if parsed is not None:
                named.setdefault(parsed[0], parsed[1])
        # With a truncated error list an unnamed item may still have failed.
        all_failures_named = result.failed <= len(result.errors)
        written_at = {(change.entityType, change.entityId): _as_utc(change.updatedAt) for change in result.applied}

        for entry in chunk:
            if not self._is_current(entry):
                # Edited again while in flight; the newer operation stays queued.
                report.retained.append(entry.key)
            elif entry.key in named:
                self._fail(entry, named[entry.key], report)
            elif all_failures_named:
                self._confirm(entry, report, written_at.get(entry.key))
            else:
                report.retained.append(entry.key)

    def _is_current(self, entry: QueuedOperation) -> bool:
        current = self._queue.get(entry.key)
        return current is not None and current.version == entry.version

    def _fail(self, entry: QueuedOperation, message: str, report: FlushReport) -> None:
        self._queue.pop(entry.key, None)
        entry.last_error = message
        self._failed[entry.key] = entry
        if self.store.get(*entry.key) is not None:
            self.store.mark_error(entry.key, message)
        report.failed[entry.key] = message
        logger.warning(
            "offline.item.rejected",
            extra={"entity_type": entry.entity_type, "entity_id": entry.entity_id, "result": message},
        )

    def _confirm(self, entry: QueuedOperation, report: FlushReport, written_at: datetime | None) -> None:
        """Settle a confirmed item; ``written_at`` is the server's write time, if it reported one.

        A held-back remote change is replayed only when the server stored it
        after our write. Without a server time (a no-op delete) the confirmed
        operation is taken as the latest state and the remote change is dropped.
        """
        self._queue.pop(entry.key, None)
        report.synced.append(entry.key)
        if entry.operation == "delete":
            self.store.remove(entry.key)
        else:
            self.store.mark_synced(entry.key, updated_at=written_at)
        deferred = self._deferred.pop(entry.key, None)
        if deferred is None:
            return
        change, remote_data = deferred
        if written_at is None or _as_utc(change.updatedAt) <= written_at:
            return
        self._apply_remote(change, remote_data, self.store.get(*entry.key))

    def retry(self, entity_type: str, entity_id: str) -> LocalRecord:
        key = (entity_type, entity_id)
        entry = self._failed.pop(key, None)
        if entry is None:
            raise KeyError(f"{entity_type}/{entity_id} has no failed operation")
        record = self.store.transition(key, SyncStatus.PENDING)
        self._enqueue(key, entry.operation, retry_count=entry.retry_count + 1)
        return record

    def discard_local(self, entity_type: str, entity_id: str) -> RemoteChangeOutcome | None:
        """Drop an unconfirmed local edit, applying a held-back remote change if there is one."""
        key = (entity_type, entity_id)
        self._queue.pop(key, None)
        self._failed.pop(key, None)
        self.store.remove(key)
        deferred = self._deferred.pop(key, None)
        if deferred is None:
            return None
        return self._apply_remote(deferred[0], deferred[1], None)

    def handle_remote_change(
        self,
        event: ChangeEvent | dict[str, Any],
        remote_data: dict[str, Any] | None = None,
    ) -> RemoteChangeOutcome:
        change = event if isinstance(event, ChangeEvent) else ChangeEvent.model_validate(event)
        key = (change.entityType, change.entityId)
        record = self.store.get(*key)
        if record is not None and record.sync_status is not SyncStatus.SYNCED:
            self._deferred[key] = (change, remote_data)
            return RemoteChangeOutcome.DEFERRED
        return self._apply_remote(change, remote_data, record)

    def _apply_remote(
        self,
        change: ChangeEvent,
        remote_data: dict[str, Any] | None,
        record: LocalRecord | None,
    ) -> RemoteChangeOutcome:
        remote_at = _as_utc(change.updatedAt)
        if record is not None and remote_at <= _as_utc(record.updated_at):
            return RemoteChangeOutcome.IGNORED
        if change.operation == "delete":
            if record is None:
                return RemoteChangeOutcome.IGNORED
            self.store.remove(record.key)
        elif remote_data is None:
            return RemoteChangeOutcome.FETCH_REQUIRED
        else:
            self.store.apply_remote(change.entityType, change.entityId, remote_data, remote_at)
        self._post(entity_message(change.entityType, change.operation, change.entityId))
        return RemoteChangeOutcome.APPLIED

    def apply_pull(self, pull: SyncPullResponse) -> dict[RemoteChangeOutcome, int]:
        """Feed every row of a pull response through :meth:`handle_remote_change`."""
        outcomes = {outcome: 0 for outcome in RemoteChangeOutcome}
        for collection, rows in pull.data.items():
            entity_type = _ENTITY_TYPES_BY_COLLECTION.get(collection)
            if entity_type is None:
                continue
            for row in rows:
                event = ChangeEvent(
                    entityType=entity_type,
                    entityId=str(row["id"]),
                    operation="delete" if row.get("deletedAt") else "update",
                    updatedAt=row["updatedAt"],
                )
                outcome = self.handle_remote_change(event, row)
                outcomes[outcome] += 1
        return outcomes

    def _post(self, message: BroadcastMessage | None) -> None:
        if message is None or self.broadcast is None:
            return
        self.broadcast.post(message)
