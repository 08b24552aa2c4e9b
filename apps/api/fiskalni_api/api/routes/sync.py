from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, BackgroundTasks, Header, Query, Request, WebSocket, WebSocketDisconnect

from fiskalni_api.api.deps import Coordinator, CurrentUserId, Hub, OptionalRedis, Store
from fiskalni_api.schemas.sync import SyncBatchResponse, SyncPullResponse
from fiskalni_api.services.realtime import RealtimeHub, publish_changes
from fiskalni_api.services.sessions import TokenVerifier
from fiskalni_api.services.sync.pull import pull_changes

router = APIRouter(prefix="/sync", tags=["sync"])


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


@router.post("/batch", response_model=SyncBatchResponse)
async def sync_batch(
    request: Request,
    coordinator: Coordinator,
    hub: Hub,
    redis: OptionalRedis,
    background_tasks: BackgroundTasks,
    authorization: Annotated[str | None, Header()] = None,
) -> SyncBatchResponse:
    body = await _read_json(request)
    outcome = await coordinator.process_batch(authorization, body)
    request.state.user_id = outcome.user_id
    request.state.sync_batch = outcome.result
    if outcome.changes:
        background_tasks.add_task(publish_changes, outcome.user_id, outcome.changes, hub=hub, redis=redis)
    return outcome.result


@router.get("/pull", response_model=SyncPullResponse)
async def sync_pull(
    store: Store,
    user_id: CurrentUserId,
    since: Annotated[datetime | None, Query()] = None,
) -> SyncPullResponse:
    return await pull_changes(store, user_id, since)


@router.websocket("/ws")
async def sync_ws(
    websocket: WebSocket,
    token: Annotated[str | None, Query()] = None,
) -> None:
    verifier = TokenVerifier(websocket.app.state.store)
    user_id = await verifier.verify_token(token)
    if user_id is None:
        await websocket.close(code=4401)
        return

    hub: RealtimeHub = websocket.app.state.hub
    await hub.connect(user_id, websocket)
    try:
        await websocket.send_json({"type": "sync.ready"})
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return
    finally:
        hub.disconnect(user_id, websocket)
