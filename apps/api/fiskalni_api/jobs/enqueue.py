from __future__ import annotations

from fiskalni_api.services.queue import enqueue_job

PURGE_TOMBSTONES_JOB = "sync.purge_tombstones"


def enqueue_purge_tombstones(retention_days: int | None = None) -> str:
    payload: dict[str, int] = {}
    if retention_days is not None:
        payload["retention_days"] = max(1, int(retention_days))
    return enqueue_job(PURGE_TOMBSTONES_JOB, payload=payload)
