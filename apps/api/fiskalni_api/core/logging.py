from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from fiskalni_api.core.config import settings


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": "fiskalni-sync-api",
            "environment": settings.app_env,
        }

        optional_fields = (
            "request_id",
            "user_id",
            "route",
            "method",
            "status_code",
            "execution_time_ms",
            "entity_type",
            "entity_id",
            "operation",
            "batch_total",
            "batch_success",
            "batch_failed",
            "job_id",
            "job_type",
            "result",
        )
        for field in optional_fields:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=True, default=str)


def setup_json_logging() -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)
