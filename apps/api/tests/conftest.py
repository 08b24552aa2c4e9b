from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Iterator
from datetime import timedelta
from pathlib import Path

import pytest

os.environ.setdefault("FISKALNI_DATABASE_URL", "sqlite+aiosqlite:///./fiskalni-test.db")
os.environ.setdefault("FISKALNI_APP_ENV", "test")
os.environ.pop("FISKALNI_REDIS_URL", None)

from fiskalni_api.db.session import SyncStore, create_store  # noqa: E402
from fiskalni_api.models import User  # noqa: E402
from fiskalni_api.services.sessions import issue_session  # noqa: E402


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}"


@pytest.fixture
def store(database_url: str) -> Iterator[SyncStore]:
    sync_store = create_store(database_url)
    asyncio.run(sync_store.create_all())
    yield sync_store
    asyncio.run(sync_store.dispose())


async def _add_user(store: SyncStore, user_id: str, is_active: bool) -> None:
    async with store.transaction() as session:
        session.add(User(id=user_id, email=f"{user_id}@example.com", full_name=user_id, is_active=is_active))


@pytest.fixture
def make_user(store: SyncStore) -> Callable[..., str]:
    def _make(user_id: str = "user-1", *, is_active: bool = True) -> str:
        asyncio.run(_add_user(store, user_id, is_active))
        return user_id

    return _make


@pytest.fixture
def make_token(store: SyncStore) -> Callable[..., str]:
    def _make(user_id: str, *, ttl: timedelta | None = None) -> str:
        return asyncio.run(issue_session(store, user_id, ttl=ttl))

    return _make
