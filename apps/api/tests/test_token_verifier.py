from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

from sqlalchemy import select

from fiskalni_api.core.security import extract_bearer_token, hash_token
from fiskalni_api.models import AuthSession
from fiskalni_api.services.sessions import TokenVerifier


def test_extract_bearer_token_accepts_only_bearer_scheme() -> None:
    assert extract_bearer_token("Bearer abc") == "abc"
    assert extract_bearer_token("Bearer   ") is None
    assert extract_bearer_token("Basic abc") is None
    assert extract_bearer_token("bearer abc") is None
    assert extract_bearer_token(None) is None
    assert extract_bearer_token("") is None


def test_hash_token_is_lowercase_sha256_hex() -> None:
    digest = hash_token("secret-token")

    assert len(digest) == 64
    assert digest == digest.lower()
    assert digest == hash_token("secret-token")
    assert digest != hash_token("secret-token2")


def test_verify_token_from_header_resolves_owner(store: Any, make_user: Any, make_token: Any) -> None:
    user_id = make_user("alice")
    token = make_token(user_id)
    verifier = TokenVerifier(store)

    assert asyncio.run(verifier.verify_token_from_header(f"Bearer {token}")) == "alice"


def test_only_token_digest_is_persisted(store: Any, make_user: Any, make_token: Any) -> None:
    token = make_token(make_user("alice"))

    async def _stored_hashes() -> list[str]:
        async with store.session() as session:
            return list((await session.scalars(select(AuthSession.token_hash))).all())

    hashes = asyncio.run(_stored_hashes())
    assert hashes == [hash_token(token)]
    assert token not in hashes


def test_verify_rejects_missing_malformed_and_unknown_credentials(store: Any, make_user: Any, make_token: Any) -> None:
    token = make_token(make_user("alice"))
    verifier = TokenVerifier(store)

    async def _verify_all() -> list[str | None]:
        return [
            await verifier.verify_token_from_header(None),
            await verifier.verify_token_from_header(token),
            await verifier.verify_token_from_header(f"Token {token}"),
            await verifier.verify_token_from_header("Bearer not-a-real-token"),
        ]

    assert asyncio.run(_verify_all()) == [None, None, None, None]


def test_verify_rejects_expired_session(store: Any, make_user: Any, make_token: Any) -> None:
    token = make_token(make_user("alice"), ttl=timedelta(seconds=-1))
    verifier = TokenVerifier(store)

    assert asyncio.run(verifier.verify_token(token)) is None


def test_verify_rejects_inactive_user(store: Any, make_user: Any, make_token: Any) -> None:
    token = make_token(make_user("bob", is_active=False))
    verifier = TokenVerifier(store)

    assert asyncio.run(verifier.verify_token(token)) is None
