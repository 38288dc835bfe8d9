"""Bearer-token authentication against the Supabase identity provider.

Routes depend on `current_user`; the verifier itself lives on
`app.state.verify_token` so tests can swap it (or override the dependency).
"""

from __future__ import annotations

import logging
import os

import httpx
from fastapi import Header, HTTPException, Request
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class User(BaseModel):
    id: str
    email: str | None = None


class SupabaseVerifier:
    """Resolve a bearer token to a user via GET {url}/auth/v1/user."""

    def __init__(self, url: str, anon_key: str, timeout: float = 10.0) -> None:
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> SupabaseVerifier | None:
        url = os.getenv("SUPABASE_URL", "")
        key = os.getenv("SUPABASE_ANON_KEY", "")
        if not url or not key:
            return None
        return cls(url, key)

    async def __call__(self, token: str) -> User | None:
        headers = {"apikey": self.anon_key, "Authorization": f"Bearer {token}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(f"{self.url}/auth/v1/user", headers=headers)
        except httpx.HTTPError as e:
            logger.warning("token verification request failed: %s", e)
            return None
        if resp.status_code != 200:
            return None
        data = resp.json()
        if not data.get("id"):
            return None
        return User(id=data["id"], email=data.get("email"))


async def current_user(request: Request, authorization: str | None = Header(default=None)) -> User:
    verifier = getattr(request.app.state, "verify_token", None)
    if verifier is None:
        raise HTTPException(500, "Server auth not configured")
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(401, "Missing bearer token")
    user = await verifier(authorization[7:].strip())
    if user is None:
        raise HTTPException(401, "Invalid token")
    return user
