from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

import httpx
import pytest

from fiskalni_api.offline.transport import HttpSyncTransport, SyncAuthError, SyncRejectedError, SyncTransportError
from fiskalni_api.schemas.sync import SyncBatchResponse

BASE_URL = "http://sync.test"


def _transport(handler: Callable[[httpx.Request], httpx.Response]) -> HttpSyncTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return HttpSyncTransport(BASE_URL, "secret-token", client=client)


def _send(transport: HttpSyncTransport) -> SyncBatchResponse:
    return asyncio.run(transport.send_batch([{"entityType": "receipt", "entityId": "r1", "operation": "delete"}]))


def test_send_batch_posts_items_with_bearer_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": 1, "failed": 0, "total": 1, "errors": []})

    result = _send(_transport(handler))

    assert result.success == 1
    assert result.total == 1
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/sync/batch"
    assert seen[0].headers["Authorization"] == "Bearer secret-token"
    assert b'"items"' in seen[0].content


def test_pull_passes_since_and_parses_response() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "success": True,
                "data": {"receipts": [{"id": "r1", "updatedAt": "2026-03-01T12:00:00Z"}]},
                "meta": {"pulledAt": "2026-03-01T12:05:00Z", "counts": {"receipts": 1}},
            },
        )

    since = datetime(2026, 3, 1, tzinfo=UTC)
    result = asyncio.run(_transport(handler).pull(since))

    assert seen[0].url.path == "/sync/pull"
    assert seen[0].url.params["since"] == since.isoformat()
    assert result.meta.counts.receipts == 1
    assert result.data["receipts"][0]["id"] == "r1"


def test_unauthorized_maps_to_auth_error() -> None:
    transport = _transport(lambda request: httpx.Response(401, json={"error": "Unauthorized"}))

    with pytest.raises(SyncAuthError, match="Unauthorized"):
        _send(transport)


def test_bad_request_maps_to_rejected_error_with_server_message() -> None:
    message = "Invalid request format - items array required"
    transport = _transport(lambda request: httpx.Response(400, json={"error": message}))

    with pytest.raises(SyncRejectedError) as exc_info:
        _send(transport)
    assert str(exc_info.value) == message


@pytest.mark.parametrize("status_code", [429, 500, 503])
def test_retryable_statuses_map_to_transport_error(status_code: int) -> None:
    transport = _transport(lambda request: httpx.Response(status_code, json={"error": "try later"}))

    with pytest.raises(SyncTransportError, match=str(status_code)):
        _send(transport)


def test_other_client_errors_are_rejections() -> None:
    transport = _transport(lambda request: httpx.Response(405, text="nope"))

    with pytest.raises(SyncRejectedError, match="405"):
        _send(transport)


def test_network_failure_maps_to_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SyncTransportError, match="ConnectError"):
        _send(_transport(handler))


def test_aclose_leaves_injected_client_open() -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(204)), base_url=BASE_URL)
    transport = HttpSyncTransport(BASE_URL, "secret-token", client=client)

    asyncio.run(transport.aclose())

    assert not client.is_closed
