"""Signed-in user session, passed explicitly to whatever needs identity.

On start-up call ``restore()``: the cached session is read from disk and
validated against the auth server before it is trusted. ``logout()`` clears
both the in-memory copy and the cache file.
"""
from __future__ import annotations

import logging
import time
from pathlib import Path

import httpx
from pydantic import BaseModel

from . import config
from .models import Role, Session, UserProfile

logger = logging.getLogger(__name__)


class CachedAuth(BaseModel):
    session: Session
    profile: UserProfile | None = None


class SessionContext:
    def __init__(self, storage_path: str | Path | None = None):
        self.storage_path = Path(storage_path or config.SESSION_FILE)
        self.session: Session | None = None
        self.profile: UserProfile | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None and self.profile is not None

    @property
    def access_token(self) -> str | None:
        return self.session.access_token if self.session else None

    @property
    def user_id(self) -> str | None:
        """Acting user id for ``created_by`` audit fields."""
        return self.session.user_id if self.session else None

    @property
    def role(self) -> Role | None:
        return self.profile.role if self.profile else None

    def _auth_url(self, path: str) -> str:
        return f"{config.BASE_URL}/auth/v1/{path}"

    def _headers(self, token: str | None = None) -> dict[str, str]:
        return {
            "apikey": config.ANON_KEY,
            "Authorization": f"Bearer {token or config.ANON_KEY}",
            "Accept": "application/json",
        }

    # persisted cache

    def _load_cache(self) -> CachedAuth | None:
        if not self.storage_path.exists():
            return None
        try:
            return CachedAuth.model_validate_json(self.storage_path.read_text())
        except ValueError:
            logger.warning("ignoring unreadable session cache %s", self.storage_path)
            return None

    def _save_cache(self) -> None:
        if self.session is None:
            return
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self.storage_path.write_text(CachedAuth(session=self.session, profile=self.profile).model_dump_json())

    def clear(self) -> None:
        self.session = None
        self.profile = None
        self.storage_path.unlink(missing_ok=True)

    # remote calls

    async def _fetch_profile(self, user_id: str) -> UserProfile | None:
        async with httpx.AsyncClient(http2=True, timeout=config.HTTP_TIMEOUT) as client:
            resp = await client.get(
                f"{config.BASE_URL}/rest/v1/profiles",
                headers=self._headers(self.access_token),
                params={"select": "*", "id": f"eq.{user_id}"},
            )
            resp.raise_for_status()
            rows = resp.json()
        return UserProfile.model_validate(rows[0]) if rows else None

    async def _token_grant(self, grant_type: str, body: dict) -> Session:
        async with httpx.AsyncClient(http2=True, timeout=config.HTTP_TIMEOUT) as client:
            resp = await client.post(
                self._auth_url("token"),
                params={"grant_type": grant_type},
                headers=self._headers(),
                json=body,
            )
            resp.raise_for_status()
            data = resp.json()
        return Session(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            user_id=data["user"]["id"],
            expires_at=data.get("expires_at") or time.time() + data.get("expires_in", 3600),
        )

    async def _adopt(self, session: Session) -> UserProfile | None:
        self.session = session
        self.profile = await self._fetch_profile(session.user_id)
        if self.profile is None:
            logger.error("no profile for user %s", session.user_id)
            self.clear()
            return None
        self._save_cache()
        return self.profile

    async def restore(self) -> UserProfile | None:
        """Rebuild the session from the cache if the auth server still accepts it."""
        cached = self._load_cache()
        if cached is None:
            self.clear()
            return None
        async with httpx.AsyncClient(http2=True, timeout=config.HTTP_TIMEOUT) as client:
            resp = await client.get(self._auth_url("user"), headers=self._headers(cached.session.access_token))
        if resp.status_code in (401, 403):
            logger.info("cached session rejected, signing out")
            self.clear()
            return None
        resp.raise_for_status()
        user = resp.json()
        if user.get("id") != cached.session.user_id:
            self.clear()
            return None
        self.session = cached.session
        if cached.profile and cached.profile.id == cached.session.user_id:
            self.profile = cached.profile
            return self.profile
        return await self._adopt(cached.session)

    async def login(self, email: str, password: str) -> UserProfile | None:
        session = await self._token_grant("password", {"email": email, "password": password})
        logger.info("signed in %s", email)
        return await self._adopt(session)

    async def refresh(self) -> UserProfile | None:
        if self.session is None:
            return None
        try:
            session = await self._token_grant("refresh_token", {"refresh_token": self.session.refresh_token})
        except httpx.HTTPStatusError:
            logger.info("session refresh rejected, signing out")
            self.clear()
            raise
        return await self._adopt(session)

    async def logout(self) -> None:
        token = self.access_token
        try:
            if token:
                async with httpx.AsyncClient(http2=True, timeout=config.HTTP_TIMEOUT) as client:
                    resp = await client.post(self._auth_url("logout"), headers=self._headers(token))
                    resp.raise_for_status()
        finally:
            self.clear()
