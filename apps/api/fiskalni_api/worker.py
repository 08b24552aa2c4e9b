from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from fiskalni_api.core.config import settings
from fiskalni_api.core.logging import setup_json_logging
from fiskalni_api.db.session import create_store
from fiskalni_api.jobs.enqueue import PURGE_TOMBSTONES_JOB
from fiskalni_api.jobs.purge_tombstones import purge_tombstones
from fiskalni_api.services.queue import JobEnvelope, dequeue_job

logger = logging.getLogger("fiskalni.api.worker")


async def _purge_with_fresh_store(retention_days: int | None) -> dict[str, int]:
    store = create_store(settings.database_url)
    try:
        return await purge_tombstones(store, retention_days=retention_days)
    finally:
        await store.dispose()


def _handle_purge_tombstones(payload: dict[str, Any]) -> dict[str, Any]:
    raw_days = payload.get("retention_days")
    retention_days = int(raw_days) if isinstance(raw_days, int) and raw_days > 0 else None
    return asyncio.run(_purge_with_fresh_store(retention_days))


JOB_HANDLERS: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
    PURGE_TOMBSTONES_JOB: _handle_purge_tombstones,
}


def process_job(job: JobEnvelope) -> None:
    handler = JOB_HANDLERS.get(job.type)
    if handler is None:
        logger.warning(
            "worker.job.unknown",
            extra={"job_id": job.id, "job_type": job.type},
        )
        return

    result = handler(job.payload)
    logger.info(
        "worker.job.completed",
        extra={"job_id": job.id, "job_type": job.type, "result": result},
    )


def run_worker() -> None:
    setup_json_logging()
    logger.info("worker.started")
    while True:
        job = dequeue_job(block_timeout_seconds=5)
        if job is None:
            continue

        try:
            process_job(job)
        except Exception:
            logger.exception(
                "worker.job.failed",
                extra={"job_id": job.id, "job_type": job.type},
            )


if __name__ == "__main__":
    run_worker()
