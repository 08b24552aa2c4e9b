from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from fiskalni_api.offline.broadcast import BroadcastChannel, BroadcastMessage, entity_message
from fiskalni_api.offline.store import InvalidSyncTransition, LocalOfflineStore, SyncStatus

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def test_local_write_starts_pending_and_follows_state_machine() -> None:
    store = LocalOfflineStore()
    record = store.write_local("receipt", "r1", {"merchantName": "Maxi"}, now=NOW)
    key = record.key

    assert record.sync_status is SyncStatus.PENDING
    assert store.mark_synced(key).sync_status is SyncStatus.SYNCED
    assert store.write_local("receipt", "r1", {"notes": "x"}).sync_status is SyncStatus.PENDING
    assert store.mark_error(key, "rejected").last_error == "rejected"
    assert store.transition(key, SyncStatus.PENDING).sync_status is SyncStatus.PENDING
    assert store.get("receipt", "r1").data == {"merchantName": "Maxi", "notes": "x"}


def test_synced_record_cannot_jump_to_error() -> None:
    store = LocalOfflineStore()
    key = store.write_local("device", "d1", {"brand": "Bosch"}).key
    store.mark_synced(key)

    with pytest.raises(InvalidSyncTransition) as exc_info:
        store.mark_error(key, "late rejection")

    assert exc_info.value.current is SyncStatus.SYNCED
    assert exc_info.value.target is SyncStatus.ERROR
    assert store.get("device", "d1").sync_status is SyncStatus.SYNCED


def test_error_record_cannot_be_marked_synced_without_retry() -> None:
    store = LocalOfflineStore()
    key = store.write_local("device", "d1", {"brand": "Bosch"}).key
    store.mark_error(key, "bad")

    with pytest.raises(InvalidSyncTransition):
        store.mark_synced(key)


def test_apply_remote_refuses_unconfirmed_records() -> None:
    store = LocalOfflineStore()
    store.write_local("receipt", "r1", {"merchantName": "Local"})

    with pytest.raises(InvalidSyncTransition):
        store.apply_remote("receipt", "r1", {"merchantName": "Remote"}, NOW)

    fresh = store.apply_remote("receipt", "r2", {"merchantName": "Remote"}, NOW)
    assert fresh.sync_status is SyncStatus.SYNCED
    assert fresh.updated_at == NOW


def test_entity_messages_only_for_receipts_and_devices() -> None:
    assert entity_message("receipt", "create", "r1") == BroadcastMessage(type="receipt-created", payload={"receiptId": "r1"})
    assert entity_message("device", "delete", "d1") == BroadcastMessage(type="device-deleted", payload={"deviceId": "d1"})
    assert entity_message("subscription", "update", "s1") is None


def test_broadcast_is_at_most_once_and_isolates_subscribers(caplog: Any) -> None:
    channel = BroadcastChannel()
    received: list[dict[str, Any]] = []

    def broken(_message: BroadcastMessage) -> None:
        raise RuntimeError("subscriber bug")

    channel.subscribe(broken)
    unsubscribe = channel.subscribe(lambda message: received.append(message.as_dict()))

    with caplog.at_level("ERROR", logger="fiskalni.offline.broadcast"):
        delivered = channel.post(BroadcastMessage(type="auth-changed", payload={"userId": None}))
    unsubscribe()
    unsubscribe()
    after = channel.post(BroadcastMessage(type="sync-completed", payload={"timestamp": 1}))

    assert delivered == 1
    assert after == 0
    assert received == [{"type": "auth-changed", "userId": None}]
    assert any(record.getMessage() == "broadcast.subscriber.failed" for record in caplog.records)


def test_broadcast_rejects_unknown_message_types() -> None:
    with pytest.raises(ValueError):
        BroadcastChannel().post(BroadcastMessage(type="receipt-exploded"))
