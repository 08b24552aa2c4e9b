from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, Request
from redis.asyncio import Redis

from fiskalni_api.core.exceptions import UnauthorizedError
from fiskalni_api.db.session import SyncStore
from fiskalni_api.services.realtime import RealtimeHub
from fiskalni_api.services.sessions import TokenVerifier
from fiskalni_api.services.sync.coordinator import SyncBatchCoordinator


def get_store(request: Request) -> SyncStore:
    return request.app.state.store


Store = Annotated[SyncStore, Depends(get_store)]


def get_redis(request: Request) -> Redis | None:
    return getattr(request.app.state, "redis", None)


OptionalRedis = Annotated[Redis | None, Depends(get_redis)]


def get_hub(request: Request) -> RealtimeHub:
    return request.app.state.hub


Hub = Annotated[RealtimeHub, Depends(get_hub)]


def get_verifier(store: Store) -> TokenVerifier:
    return TokenVerifier(store)


Verifier = Annotated[TokenVerifier, Depends(get_verifier)]


def get_coordinator(store: Store, verifier: Verifier) -> SyncBatchCoordinator:
    return SyncBatchCoordinator(store, verifier)


Coordinator = Annotated[SyncBatchCoordinator, Depends(get_coordinator)]


async def get_current_user_id(
    request: Request,
    verifier: Verifier,
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    user_id = await verifier.verify_token_from_header(authorization)
    if user_id is None:
        raise UnauthorizedError()
    request.state.user_id = user_id
    return user_id


CurrentUserId = Annotated[str, Depends(get_current_user_id)]
