"""Authenticated session handling for the Jellyfin library service."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass

import httpx

from ..config import Settings
from ..errors import AuthError, UpstreamError

logger = logging.getLogger(__name__)

CLIENT_AUTHORIZATION = (
    'MediaBrowser Client="StremioAddon", Device="Addon", '
    'DeviceId="stremio-addon", Version="4.0.0"'
)


class SessionState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True, slots=True)
class Session:
    """Token and user id obtained from a successful login exchange."""

    token: str
    user_id: str
    user_name: str | None = None


class SessionManager:
    """Owns the service account session and re-authenticates lazily.

    Concurrent callers that find no session wait on a single login exchange
    instead of each performing their own.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._session: Session | None = None
        self._state = SessionState.UNAUTHENTICATED
        self._lock = asyncio.Lock()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    async def ensure_authenticated(self) -> Session:
        """Return the current session, logging in first when there is none."""

        session = self._session
        if session is not None:
            return session
        async with self._lock:
            if self._session is not None:
                return self._session
            self._state = SessionState.AUTHENTICATING
            try:
                self._session = await self._login()
            except Exception:
                self._state = SessionState.UNAUTHENTICATED
                raise
            self._state = SessionState.AUTHENTICATED
            return self._session

    def invalidate(self, rejected: Session | None = None) -> None:
        """Drop the session if it is still the one observed as rejected."""

        if rejected is not None and self._session is not rejected:
            return
        if self._session is not None:
            logger.info("Jellyfin session invalidated; will re-authenticate")
        self._session = None
        self._state = SessionState.UNAUTHENTICATED

    def headers(self, session: Session | None = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Emby-Authorization": CLIENT_AUTHORIZATION,
        }
        if session is not None:
            headers["X-MediaBrowser-Token"] = session.token
        return headers

    async def _login(self) -> Session:
        server = self._settings.jellyfin_server
        if not server:
            raise AuthError("JELLYFIN_SERVER is not configured")

        logger.info("Authenticating against %s/Users/AuthenticateByName", server)
        body = {
            "Username": self._settings.jellyfin_user,
            "Pw": self._settings.jellyfin_password,
            "Password": self._settings.jellyfin_password,
        }
        try:
            response = await self._client.post(
                f"{server}/Users/AuthenticateByName",
                json=body,
                headers=self.headers(),
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Login request failed: {exc}") from exc

        if response.status_code >= 400:
            raise AuthError(f"Login HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as exc:
            raise AuthError("Login response was not valid JSON") from exc

        user = data.get("User") if isinstance(data, dict) else None
        token = data.get("AccessToken") if isinstance(data, dict) else None
        user_id = user.get("Id") if isinstance(user, dict) else None
        if not token or not user_id:
            raise AuthError("Login response missing AccessToken or User.Id")

        name = user.get("Name") or self._settings.jellyfin_user
        logger.info("Logged in to %s as %s (user id %s)", server, name, user_id)
        return Session(token=str(token), user_id=str(user_id), user_name=name)
