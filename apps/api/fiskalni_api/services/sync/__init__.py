from fiskalni_api.services.sync.coordinator import BatchOutcome, SyncBatchCoordinator
from fiskalni_api.services.sync.handlers import HANDLERS, EntityHandler, ItemResult, resolve_handler
from fiskalni_api.services.sync.pull import pull_changes

__all__ = [
    "HANDLERS",
    "BatchOutcome",
    "EntityHandler",
    "ItemResult",
    "SyncBatchCoordinator",
    "pull_changes",
    "resolve_handler",
]
