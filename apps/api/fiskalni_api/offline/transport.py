from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

import httpx

from fiskalni_api.schemas.sync import SyncBatchResponse, SyncPullResponse


class SyncClientError(Exception):
    pass


class SyncTransportError(SyncClientError):
    """The outcome is unknown (network failure, timeout, 5xx, 429); retrying is safe."""


class SyncAuthError(SyncClientError):
    pass


class SyncRejectedError(SyncClientError):
    pass


class SyncTransport(Protocol):
    async def send_batch(self, items: list[dict[str, Any]]) -> SyncBatchResponse: ...


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return response.reason_phrase


class HttpSyncTransport:
    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._token = token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as exc:
            raise SyncTransportError(f"{type(exc).__name__}: {exc}") from exc

        if response.status_code == httpx.codes.UNAUTHORIZED:
            raise SyncAuthError(_error_message(response))
        if response.status_code == httpx.codes.BAD_REQUEST:
            raise SyncRejectedError(_error_message(response))
        if response.status_code == httpx.codes.TOO_MANY_REQUESTS or response.is_server_error:
            raise SyncTransportError(f"{response.status_code}: {_error_message(response)}")
        if not response.is_success:
            raise SyncRejectedError(f"{response.status_code}: {_error_message(response)}")
        return response

    async def send_batch(self, items: list[dict[str, Any]]) -> SyncBatchResponse:
        response = await self._request("POST", "/sync/batch", json={"items": items})
        return SyncBatchResponse.model_validate(response.json())

    async def pull(self, since: datetime | None = None) -> SyncPullResponse:
        params = {"since": since.isoformat()} if since is not None else None
        response = await self._request("GET", "/sync/pull", params=params)
        return SyncPullResponse.model_validate(response.json())

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
