from __future__ import annotations

import hashlib
from secrets import token_hex

BEARER_PREFIX = "Bearer "


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_token(num_bytes: int = 32) -> str:
    return token_hex(num_bytes)


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None
