"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.config import Settings  # noqa: E402
from app.services.addon import AddonService  # noqa: E402
from app.services.cache import CacheStore, MemoryBackend  # noqa: E402
from app.services.jellyfin import JellyfinClient  # noqa: E402
from app.services.session import SessionManager  # noqa: E402
from app.services.tmdb import TMDBClient  # noqa: E402

JELLYFIN_URL = "http://jellyfin.test"


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base: dict[str, Any] = {
        "JELLYFIN_SERVER": JELLYFIN_URL,
        "JELLYFIN_USER": "addon",
        "JELLYFIN_PASSWORD": "secret",
        "UPSTREAM_RETRIES": 0,
    }
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


class FakeJellyfin:
    """In-process stand-in for the Jellyfin HTTP API."""

    def __init__(self) -> None:
        self.movies: list[dict[str, Any]] = []
        self.series: list[dict[str, Any]] = []
        self.items: dict[str, dict[str, Any]] = {}
        self.episodes: dict[str, list[dict[str, Any]]] = {}
        self.seasons: dict[str, list[dict[str, Any]]] = {}
        self.season_episodes: dict[str, list[dict[str, Any]]] = {}
        self.rejected_tokens: set[str] = set()
        self.login_status = 200
        self.logins = 0
        self.requests: list[httpx.Request] = []

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        params = request.url.params

        if path == "/Users/AuthenticateByName":
            if self.login_status != 200:
                return httpx.Response(self.login_status, json={"error": "denied"})
            self.logins += 1
            return httpx.Response(
                200,
                json={
                    "AccessToken": f"token-{self.logins}",
                    "User": {"Id": "user-1", "Name": "addon"},
                },
            )

        if request.headers.get("X-MediaBrowser-Token") in self.rejected_tokens:
            return httpx.Response(401)

        if path == "/Items":
            if params.get("ParentId"):
                return httpx.Response(
                    200, json={"Items": self.episodes.get(params["ParentId"], [])}
                )
            pool = self.movies if params.get("IncludeItemTypes") == "Movie" else self.series
            start = int(params.get("StartIndex", "0"))
            limit = int(params.get("Limit", str(len(pool) or 1)))
            return httpx.Response(
                200,
                json={
                    "Items": pool[start : start + limit],
                    "TotalRecordCount": len(pool),
                },
            )

        if path.startswith("/Items/"):
            item = self.items.get(path.split("/")[2])
            if item is None:
                return httpx.Response(404)
            return httpx.Response(200, json=item)

        if path.startswith("/Shows/") and path.endswith("/Seasons"):
            return httpx.Response(
                200, json={"Items": self.seasons.get(path.split("/")[2], [])}
            )

        if path.startswith("/Shows/") and path.endswith("/Episodes"):
            season_id = params.get("seasonId", "")
            return httpx.Response(
                200, json={"Items": self.season_episodes.get(season_id, [])}
            )

        return httpx.Response(404)


def empty_tmdb_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"results": []})


class AddonStack:
    """Bundle of wired services backed by mock transports."""

    def __init__(
        self,
        jellyfin: FakeJellyfin,
        tmdb_handler: Callable[[httpx.Request], httpx.Response] = empty_tmdb_handler,
        **overrides: Any,
    ) -> None:
        self.settings = build_settings(**overrides)
        self.jellyfin = jellyfin
        self.tmdb_requests: list[httpx.Request] = []

        def _tmdb(request: httpx.Request) -> httpx.Response:
            self.tmdb_requests.append(request)
            return tmdb_handler(request)

        jellyfin_http = httpx.AsyncClient(transport=httpx.MockTransport(jellyfin.handler))
        tmdb_http = httpx.AsyncClient(transport=httpx.MockTransport(_tmdb))
        self.library_cache = CacheStore(MemoryBackend(), name="library")
        self.metadata_cache = CacheStore(MemoryBackend(), name="metadata")
        self.sessions = SessionManager(self.settings, jellyfin_http)
        self.library = JellyfinClient(
            self.settings, jellyfin_http, self.sessions, self.library_cache, retry_backoff=0
        )
        self.metadata = TMDBClient(self.settings, tmdb_http, self.metadata_cache)
        self.service = AddonService(
            self.settings, self.sessions, self.library, self.metadata
        )


@pytest.fixture
def fake_jellyfin() -> FakeJellyfin:
    return FakeJellyfin()


@pytest.fixture
def make_stack() -> Callable[..., AddonStack]:
    return AddonStack
