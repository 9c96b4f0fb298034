"""Utilities for communicating with the Jellyfin library service."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import AuthError, NotFoundError, UpstreamError
from ..models import LIBRARY_ITEM_TYPES, ContentType, LibraryItem, SeasonEpisodes
from .cache import CacheStore
from .session import Session, SessionManager

logger = logging.getLogger(__name__)

LISTING_FIELDS = "PrimaryImageTag,ProductionYear"
ITEM_FIELDS = (
    "PrimaryImageTag,Overview,Genres,ProductionYear,BackdropImageTags,RunTimeTicks"
)
EPISODE_FIELDS = "ParentIndexNumber,IndexNumber,PremiereDate,PrimaryImageTag"

_AUTH_FAILURE_STATUSES = {401, 403}


class JellyfinClient:
    """Fetches library items and episodes on behalf of the service account."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        sessions: SessionManager,
        cache: CacheStore,
        *,
        retry_backoff: float = 1.0,
    ):
        self._settings = settings
        self._client = http_client
        self._sessions = sessions
        self._cache = cache
        self._max_retries = settings.upstream_retries
        self._retry_backoff = retry_backoff

    @property
    def server(self) -> str:
        server = self._settings.jellyfin_server
        if not server:
            raise UpstreamError("JELLYFIN_SERVER is not configured")
        return server

    async def list_items(self, kind: ContentType) -> list[LibraryItem]:
        """Return every movie or series in the library, in server order."""

        params = {
            "IncludeItemTypes": LIBRARY_ITEM_TYPES[kind],
            "Recursive": "true",
            "Fields": LISTING_FIELDS,
        }

        async def fetch() -> list[dict[str, Any]]:
            return await self._fetch_paged("/Items", params)

        raw = await self._cache.get_or_fetch(
            f"catalog:{kind}", self._settings.catalog_cache_seconds, fetch
        )
        return LibraryItem.from_payloads(raw)

    async def get_item(self, item_id: str) -> LibraryItem:
        """Return a single item with its full descriptive fields."""

        async def fetch() -> dict[str, Any]:
            data = await self._get_json(f"/Items/{item_id}", {"Fields": ITEM_FIELDS})
            if not isinstance(data, dict) or not data.get("Id"):
                raise UpstreamError(f"Unexpected item payload for {item_id}")
            return data

        raw = await self._cache.get_or_fetch(
            f"meta:{item_id}", self._settings.item_cache_seconds, fetch
        )
        try:
            return LibraryItem.model_validate(raw)
        except ValidationError as exc:
            raise UpstreamError(f"Malformed item payload for {item_id}") from exc

    async def list_episodes(self, series_id: str) -> list[LibraryItem]:
        """Return all episodes below a series in server order."""

        return LibraryItem.from_payloads(await self._episode_payloads(series_id))

    async def resolve_seasons_then_episodes(
        self, series_id: str
    ) -> list[SeasonEpisodes]:
        """Enumerate episodes season by season.

        Servers that expose no season groupings for the series fall back to the
        flat parent-id episode listing, grouped by each episode's season index.
        """

        async def fetch() -> list[dict[str, Any]]:
            seasons = await self._get_json(f"/Shows/{series_id}/Seasons", {})
            season_items = _items_of(seasons)
            if not season_items:
                logger.info(
                    "Series %s exposes no seasons; using flat episode listing",
                    series_id,
                )
                return _group_by_season(await self._episode_payloads(series_id))

            grouped: list[dict[str, Any]] = []
            for season in season_items:
                season_id = season.get("Id")
                if not season_id:
                    continue
                episodes = await self._get_json(
                    f"/Shows/{series_id}/Episodes",
                    {"seasonId": season_id, "Fields": EPISODE_FIELDS},
                )
                grouped.append(
                    {
                        "season": season.get("IndexNumber"),
                        "episodes": _items_of(episodes),
                    }
                )
            return grouped

        raw = await self._cache.get_or_fetch(
            f"seasons:{series_id}", self._settings.item_cache_seconds, fetch
        )
        if not isinstance(raw, list):
            raise UpstreamError(f"Malformed season listing for {series_id}")
        groups: list[SeasonEpisodes] = []
        for group in raw:
            if not isinstance(group, dict):
                raise UpstreamError(f"Malformed season listing for {series_id}")
            season = group.get("season")
            groups.append(
                SeasonEpisodes(
                    season=season if isinstance(season, int) else None,
                    episodes=LibraryItem.from_payloads(group.get("episodes")),
                )
            )
        return groups

    def poster_url(self, item: LibraryItem, token: str, width: int = 500) -> str | None:
        tag = item.primary_tag
        if not tag:
            return None
        return self._image_url(item.id, "Primary", tag, token, width)

    def backdrop_url(
        self, item: LibraryItem, token: str, width: int = 1280
    ) -> str | None:
        tag = (item.backdrop_image_tags or [None])[0] or item.primary_tag
        if not tag:
            return None
        return self._image_url(item.id, "Backdrop", tag, token, width)

    def stream_url(self, item_id: str, token: str) -> str:
        query = urlencode({"static": "true", "api_key": token})
        return f"{self.server}/Videos/{item_id}/stream?{query}"

    def _image_url(
        self, item_id: str, kind: str, tag: str, token: str, width: int
    ) -> str:
        query = urlencode(
            {"fillWidth": width, "quality": 90, "tag": tag, "api_key": token}
        )
        return f"{self.server}/Items/{item_id}/Images/{kind}?{query}"

    async def _episode_payloads(self, series_id: str) -> list[dict[str, Any]]:
        params = {
            "ParentId": series_id,
            "IncludeItemTypes": "Episode",
            "Recursive": "true",
            "Fields": EPISODE_FIELDS,
        }

        async def fetch() -> list[dict[str, Any]]:
            return _items_of(await self._get_json("/Items", params))

        return await self._cache.get_or_fetch(
            f"episodes:{series_id}", self._settings.item_cache_seconds, fetch
        )

    async def _fetch_paged(
        self, path: str, params: dict[str, Any]
    ) -> list[dict[str, Any]]:
        page_size = self._settings.library_page_size
        collected: list[dict[str, Any]] = []
        start = 0
        while True:
            data = await self._get_json(
                path, {**params, "StartIndex": start, "Limit": page_size}
            )
            items = _items_of(data)
            collected.extend(items)
            total = data.get("TotalRecordCount") if isinstance(data, dict) else None
            if len(items) < page_size:
                break
            if isinstance(total, int) and len(collected) >= total:
                break
            start += len(items)
        logger.info("Jellyfin returned %s items for %s", len(collected), params)
        return collected

    async def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        """Perform an authenticated GET, re-authenticating once on rejection."""

        session = await self._sessions.ensure_authenticated()
        response = await self._send(path, params, session)
        if response.status_code in _AUTH_FAILURE_STATUSES:
            logger.info(
                "Jellyfin rejected token for %s (%s); logging in again",
                path,
                response.status_code,
            )
            self._sessions.invalidate(session)
            session = await self._sessions.ensure_authenticated()
            response = await self._send(path, params, session)
            if response.status_code in _AUTH_FAILURE_STATUSES:
                raise AuthError(
                    f"Jellyfin rejected a fresh session for {path}: "
                    f"{response.status_code}"
                )

        if response.status_code == 404:
            raise NotFoundError(f"Jellyfin has no record at {path}")
        if response.status_code >= 400:
            raise UpstreamError(f"Jellyfin {path} failed: HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(f"Jellyfin {path} returned non-JSON payload") from exc

    async def _send(
        self, path: str, params: dict[str, Any], session: Session
    ) -> httpx.Response:
        url = f"{self.server}{path}"
        query = {**params, "UserId": session.user_id}
        return await self._with_retries(
            path,
            lambda: self._client.get(
                url, params=query, headers=self._sessions.headers(session)
            ),
        )

    async def _with_retries(
        self, path: str, request: Callable[[], Awaitable[httpx.Response]]
    ) -> httpx.Response:
        # Retry on transient errors (timeouts, 5xx)
        attempt = 0
        while True:
            try:
                response = await request()
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    await self._backoff(path, attempt, exc.__class__.__name__)
                    continue
                raise UpstreamError(f"Jellyfin {path} unreachable: {exc}") from exc
            if 500 <= response.status_code < 600 and attempt < self._max_retries:
                attempt += 1
                await self._backoff(path, attempt, f"HTTP {response.status_code}")
                continue
            return response

    async def _backoff(self, path: str, attempt: int, reason: str) -> None:
        delay = (min(2 ** (attempt - 1), 5) + 0.1 * attempt) * self._retry_backoff
        logger.info(
            "Transient error talking to Jellyfin (%s) for %s. Retrying in %.1fs",
            reason,
            path,
            delay,
        )
        await asyncio.sleep(delay)


def _items_of(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, dict):
        items = payload.get("Items")
    else:
        items = payload
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def _group_by_season(episodes: list[dict[str, Any]]) -> list[dict[str, Any]]:
    grouped: dict[int | None, list[dict[str, Any]]] = defaultdict(list)
    for episode in episodes:
        season = episode.get("ParentIndexNumber")
        grouped[season if isinstance(season, int) else None].append(episode)
    ordered = sorted(grouped, key=lambda season: (season is None, season or 0))
    return [{"season": season, "episodes": grouped[season]} for season in ordered]
