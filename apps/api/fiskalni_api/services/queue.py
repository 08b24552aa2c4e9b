from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from redis import Redis

from fiskalni_api.core.config import settings


class QueueUnavailableError(RuntimeError):
    pass


@dataclass(frozen=True)
class JobEnvelope:
    id: str
    type: str
    payload: dict[str, Any]
    created_at: str

    @classmethod
    def from_json(cls, raw: str) -> JobEnvelope:
        data = json.loads(raw)
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            payload=dict(data.get("payload") or {}),
            created_at=str(data["created_at"]),
        )


def _redis_client() -> Redis:
    if not settings.redis_url:
        raise QueueUnavailableError("FISKALNI_REDIS_URL is not configured")
    return Redis.from_url(settings.redis_url, decode_responses=True, encoding="utf-8")


def enqueue_job(job_type: str, payload: dict[str, Any] | None = None, *, client: Redis | None = None) -> str:
    job = JobEnvelope(
        id=str(uuid4()),
        type=job_type,
        payload=payload or {},
        created_at=datetime.now(UTC).isoformat(),
    )
    redis = client or _redis_client()
    try:
        redis.rpush(settings.queue_name, json.dumps(asdict(job), ensure_ascii=True))
    finally:
        if client is None:
            redis.close()
    return job.id


def dequeue_job(block_timeout_seconds: int = 5, *, client: Redis | None = None) -> JobEnvelope | None:
    redis = client or _redis_client()
    try:
        result = redis.blpop(settings.queue_name, timeout=block_timeout_seconds)
    finally:
        if client is None:
            redis.close()

    if result is None:
        return None
    _queue_name, raw_job = result
    return JobEnvelope.from_json(raw_job)
