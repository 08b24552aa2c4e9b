from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import select, update

from fiskalni_api import worker
from fiskalni_api.jobs import enqueue as enqueue_module
from fiskalni_api.jobs.purge_tombstones import purge_tombstones
from fiskalni_api.models import AuthSession, EntityType, Receipt, Reminder
from fiskalni_api.services import queue
from fiskalni_api.services.queue import JobEnvelope, dequeue_job, enqueue_job
from fiskalni_api.services.sync.handlers import HANDLERS


class _FakeQueueRedis:
    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}
        self.closed = False

    def rpush(self, name: str, value: str) -> int:
        self.lists.setdefault(name, []).append(value)
        return len(self.lists[name])

    def blpop(self, name: str, timeout: int = 0) -> tuple[str, str] | None:
        items = self.lists.get(name)
        if not items:
            return None
        return name, items.pop(0)

    def close(self) -> None:
        self.closed = True


def _apply(store: Any, entity_type: EntityType, entity_id: str, operation: str, data: dict[str, Any] | None = None) -> None:
    result = asyncio.run(HANDLERS[entity_type].apply(store, "alice", entity_id, operation, data))
    assert result.ok, result.error


def _age_tombstone(store: Any, model: Any, entity_id: str, days: int) -> None:
    async def _update() -> None:
        async with store.transaction() as session:
            await session.execute(
                update(model).where(model.id == entity_id).values(deleted_at=datetime.now(UTC) - timedelta(days=days)),
            )

    asyncio.run(_update())


def _ids(store: Any, model: Any) -> set[str]:
    async def _load() -> set[str]:
        async with store.session() as session:
            return set((await session.scalars(select(model.id))).all())

    return asyncio.run(_load())


def test_purge_removes_only_old_tombstones_and_expired_sessions(store: Any, make_user: Any, make_token: Any) -> None:
    make_user("alice")
    make_token("alice")
    make_token("alice", ttl=timedelta(seconds=-5))
    receipt = {"merchantName": "Maxi", "totalAmount": 1}
    for entity_id in ("live", "recent", "old"):
        _apply(store, EntityType.RECEIPT, entity_id, "create", receipt)
    _apply(store, EntityType.REMINDER, "rm-old", "create", {"deviceId": "d1", "type": "push", "daysBeforeExpiry": 3})
    for entity_id in ("recent", "old"):
        _apply(store, EntityType.RECEIPT, entity_id, "delete")
    _apply(store, EntityType.REMINDER, "rm-old", "delete")
    _age_tombstone(store, Receipt, "old", days=120)
    _age_tombstone(store, Reminder, "rm-old", days=91)

    removed = asyncio.run(purge_tombstones(store, retention_days=90))

    assert removed["receipts"] == 1
    assert removed["reminders"] == 1
    assert removed["devices"] == 0
    assert removed["auth_sessions"] == 1
    assert _ids(store, Receipt) == {"live", "recent"}
    assert len(_ids(store, AuthSession)) == 1


def test_enqueue_and_dequeue_round_trip_json_envelope() -> None:
    redis = _FakeQueueRedis()

    job_id = enqueue_job("sync.purge_tombstones", {"retention_days": 30}, client=redis)  # type: ignore[arg-type]
    raw = redis.lists[queue.settings.queue_name][0]
    job = dequeue_job(client=redis)  # type: ignore[arg-type]

    assert json.loads(raw)["id"] == job_id
    assert job == JobEnvelope(id=job_id, type="sync.purge_tombstones", payload={"retention_days": 30}, created_at=job.created_at)
    assert dequeue_job(client=redis) is None  # type: ignore[arg-type]
    assert not redis.closed


def test_enqueue_purge_tombstones_clamps_retention(monkeypatch: Any) -> None:
    captured: list[tuple[str, dict[str, Any]]] = []

    def fake_enqueue_job(job_type: str, payload: dict[str, Any] | None = None) -> str:
        captured.append((job_type, payload or {}))
        return "job-1"

    monkeypatch.setattr(enqueue_module, "enqueue_job", fake_enqueue_job)

    assert enqueue_module.enqueue_purge_tombstones(0) == "job-1"
    assert enqueue_module.enqueue_purge_tombstones() == "job-1"
    assert captured == [("sync.purge_tombstones", {"retention_days": 1}), ("sync.purge_tombstones", {})]


def test_worker_dispatches_by_job_type(monkeypatch: Any, caplog: Any) -> None:
    seen: list[dict[str, Any]] = []

    def fake_handler(payload: dict[str, Any]) -> dict[str, Any]:
        seen.append(payload)
        return {"receipts": 2}

    monkeypatch.setitem(worker.JOB_HANDLERS, "sync.purge_tombstones", fake_handler)
    job = JobEnvelope(id="1", type="sync.purge_tombstones", payload={"retention_days": 7}, created_at="now")
    unknown = JobEnvelope(id="2", type="nope", payload={}, created_at="now")

    with caplog.at_level("INFO", logger="fiskalni.api.worker"):
        worker.process_job(job)
        worker.process_job(unknown)

    assert seen == [{"retention_days": 7}]
    messages = [record.getMessage() for record in caplog.records]
    assert "worker.job.completed" in messages
    assert "worker.job.unknown" in messages
