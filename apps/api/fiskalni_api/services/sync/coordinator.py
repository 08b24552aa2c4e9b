from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import pydantic

from fiskalni_api.core.config import settings
from fiskalni_api.core.exceptions import UnauthorizedError, ValidationError
from fiskalni_api.db.session import SyncStore
from fiskalni_api.models import EntityType, SyncOperation
from fiskalni_api.schemas.sync import ChangeEvent, SyncBatchRequest, SyncBatchResponse, SyncItem
from fiskalni_api.services.sync.handlers import HANDLERS, EntityHandler, ItemResult, resolve_handler

logger = logging.getLogger("fiskalni.api.sync.batch")

INVALID_BATCH_MESSAGE = "Invalid request format - items array required"

_OPERATIONS = {operation.value for operation in SyncOperation}


class CredentialVerifier(Protocol):
    async def verify_token_from_header(self, authorization: str | None) -> str | None: ...


@dataclass
class BatchOutcome:
    user_id: str
    result: SyncBatchResponse
    changes: list[ChangeEvent] = field(default_factory=list)


class SyncBatchCoordinator:
    """Applies a batch of offline operations for one authenticated user.

    Items are processed in fixed-size windows: windows run one after another,
    the items inside a window run concurrently, each in its own transaction.
    A failing item never affects its siblings; failures are reported in-band
    as ``"<entityType>/<entityId>: <message>"`` strings, capped at
    ``max_errors`` while ``failed`` keeps the true count.
    """

    def __init__(
        self,
        store: SyncStore,
        verifier: CredentialVerifier,
        *,
        handlers: Mapping[EntityType, EntityHandler] | None = None,
        window_size: int | None = None,
        max_errors: int | None = None,
        max_items: int | None = None,
    ) -> None:
        self.store = store
        self.verifier = verifier
        self.handlers = dict(handlers if handlers is not None else HANDLERS)
        self.window_size = max(1, window_size or settings.sync_batch_window_size)
        self.max_errors = max_errors if max_errors is not None else settings.sync_batch_max_errors
        self.max_items = max_items if max_items is not None else settings.sync_batch_max_items

    async def authenticate(self, authorization: str | None) -> str:
        user_id = await self.verifier.verify_token_from_header(authorization)
        if user_id is None:
            raise UnauthorizedError()
        return user_id

    def parse_items(self, body: Any) -> list[SyncItem]:
        try:
            request = SyncBatchRequest.model_validate(body)
        except pydantic.ValidationError as exc:
            raise ValidationError(INVALID_BATCH_MESSAGE) from exc
        if len(request.items) > self.max_items:
            raise ValidationError(f"Batch too large - at most {self.max_items} items allowed")
        return request.items

    async def process_batch(self, authorization: str | None, body: Any) -> BatchOutcome:
        user_id = await self.authenticate(authorization)
        items = self.parse_items(body)

        results: list[ItemResult] = []
        for start in range(0, len(items), self.window_size):
            window = items[start : start + self.window_size]
            settled = await asyncio.gather(
                *(self._process_item(user_id, item) for item in window),
                return_exceptions=True,
            )
            for item, outcome in zip(window, settled, strict=True):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    logger.error(
                        "sync.item.crashed",
                        exc_info=outcome,
                        extra={"user_id": user_id, "entity_type": item.entityType, "entity_id": item.entityId},
                    )
                    outcome = ItemResult(item.entityType, item.entityId, item.operation, error="Internal error")
                results.append(outcome)

        outcome = self._summarize(user_id, results)
        logger.info(
            "sync.batch.completed",
            extra={
                "user_id": user_id,
                "batch_total": outcome.result.total,
                "batch_success": outcome.result.success,
                "batch_failed": outcome.result.failed,
            },
        )
        return outcome

    async def _process_item(self, user_id: str, item: SyncItem) -> ItemResult:
        handler = resolve_handler(item.entityType, self.handlers)
        if handler is None:
            return self._failure(user_id, item, f"Unsupported entity type: {item.entityType}")
        if item.operation not in _OPERATIONS:
            return self._failure(user_id, item, f"Unsupported operation: {item.operation}")
        if item.operation != SyncOperation.DELETE.value and item.data is None:
            return self._failure(user_id, item, "Data is required")

        result = await handler.apply(self.store, user_id, item.entityId, item.operation, item.data)
        if not result.ok:
            self._log_failure(user_id, result)
        return result

    def _failure(self, user_id: str, item: SyncItem, message: str) -> ItemResult:
        result = ItemResult(item.entityType, item.entityId, item.operation, error=message)
        self._log_failure(user_id, result)
        return result

    def _log_failure(self, user_id: str, result: ItemResult) -> None:
        logger.warning(
            "sync.item.failed",
            extra={
                "user_id": user_id,
                "entity_type": result.entity_type,
                "entity_id": result.entity_id,
                "operation": result.operation,
                "result": result.error,
            },
        )

    def _summarize(self, user_id: str, results: list[ItemResult]) -> BatchOutcome:
        failures = [result for result in results if not result.ok]
        changes = [
            ChangeEvent(
                entityType=result.entity_type,
                entityId=result.entity_id,
                operation=result.operation,
                updatedAt=result.updated_at,
            )
            for result in results
            if result.ok and result.updated_at is not None
        ]
        return BatchOutcome(
            user_id=user_id,
            result=SyncBatchResponse(
                success=len(results) - len(failures),
                failed=len(failures),
                total=len(results),
                errors=[result.describe() for result in failures[: self.max_errors]],
                applied=changes,
            ),
            changes=changes,
        )
