from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import select

from fiskalni_api.core.config import settings
from fiskalni_api.core.security import extract_bearer_token, generate_token, hash_token
from fiskalni_api.db.session import SyncStore
from fiskalni_api.models import AuthSession, User

logger = logging.getLogger("fiskalni.api.sessions")


class TokenVerifier:
    """Resolves a bearer credential to the owning user id.

    Only the SHA-256 digest of a token is ever stored or compared. The
    verifier is read-only, so concurrent callers need no coordination.
    """

    def __init__(self, store: SyncStore) -> None:
        self.store = store

    async def verify_token(self, token: str | None) -> str | None:
        if not token:
            return None
        token_hash = hash_token(token)
        async with self.store.session() as session:
            user_id = await session.scalar(
                select(AuthSession.user_id)
                .join(User, User.id == AuthSession.user_id)
                .where(
                    AuthSession.token_hash == token_hash,
                    AuthSession.expires_at > datetime.now(UTC),
                    User.is_active.is_(True),
                )
                .limit(1),
            )
        return user_id

    async def verify_token_from_header(self, authorization: str | None) -> str | None:
        return await self.verify_token(extract_bearer_token(authorization))


async def issue_session(store: SyncStore, user_id: str, *, ttl: timedelta | None = None) -> str:
    """Persist a new session for ``user_id`` and return the raw token."""
    token = generate_token()
    expires_at = datetime.now(UTC) + (ttl if ttl is not None else timedelta(days=settings.session_ttl_days))
    async with store.transaction() as session:
        session.add(AuthSession(user_id=user_id, token_hash=hash_token(token), expires_at=expires_at))
    logger.info("session.issued", extra={"user_id": user_id})
    return token

