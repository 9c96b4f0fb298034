"""Assembles catalog, meta and stream payloads from the upstream adapters."""

from __future__ import annotations

import asyncio
import logging

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import AddonError
from ..models import (
    CanonicalMeta,
    CatalogEntry,
    ContentType,
    LibraryItem,
    MetadataRecord,
    StreamTarget,
    Video,
)
from ..utils import (
    MediaId,
    decode_media_id,
    encode_episode_id,
    encode_item_id,
    ticks_to_minutes,
)
from .jellyfin import JellyfinClient
from .localization import Localizer, localizer_for
from .session import SessionManager
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)

_RECOVERABLE_ERRORS = (AddonError, httpx.HTTPError, ValidationError)


class AddonService:
    """Merges library records with metadata lookups into addon responses.

    Upstream failures never escape: catalogs degrade per item, meta requests
    fall back to a placeholder and stream requests to an empty list.
    """

    def __init__(
        self,
        settings: Settings,
        sessions: SessionManager,
        library: JellyfinClient,
        metadata: TMDBClient,
        localizer: Localizer | None = None,
    ):
        self._settings = settings
        self._sessions = sessions
        self._library = library
        self._metadata = metadata
        self._localizer = localizer or localizer_for(settings.tmdb_language)
        self._concurrency = settings.catalog_concurrency

    async def list_catalog(self, kind: ContentType) -> list[CatalogEntry]:
        """Return catalog cards for every library item of ``kind``."""

        logger.info("Loading catalog for %s", kind)
        try:
            items = await self._library.list_items(kind)
            session = await self._sessions.ensure_authenticated()
        except _RECOVERABLE_ERRORS as exc:
            logger.warning("Catalog listing for %s failed: %s", kind, exc)
            return []

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _build(item: LibraryItem) -> CatalogEntry:
            async with semaphore:
                match = await self._safe_lookup(item, is_movie=kind == "movie")
            return CatalogEntry(
                id=encode_item_id(item.id),
                type=kind,
                name=(match.title if match else None) or item.name,
                poster=(match.poster if match else None)
                or self._library.poster_url(item, session.token, 500),
            )

        return list(await asyncio.gather(*(_build(item) for item in items)))

    async def get_meta(self, media_id: str, kind: ContentType) -> CanonicalMeta:
        """Return merged metadata for a movie or series id."""

        logger.info("Resolving meta for %s %s", kind, media_id)
        try:
            decoded = decode_media_id(media_id)
            if kind == "movie":
                return await self._movie_meta(media_id, decoded)
            return await self._series_meta(media_id, decoded)
        except _RECOVERABLE_ERRORS as exc:
            logger.warning("Meta resolution for %s failed: %s", media_id, exc)
            return CanonicalMeta.placeholder(media_id, kind)

    async def get_streams(
        self, media_id: str, kind: ContentType
    ) -> list[StreamTarget]:
        """Return direct-stream targets for a movie, episode or whole series."""

        logger.info("Resolving streams for %s %s", kind, media_id)
        try:
            decoded = decode_media_id(media_id)
            session = await self._sessions.ensure_authenticated()
            if decoded.is_episode:
                label = _episode_label(decoded.season, decoded.episode)
                return [
                    StreamTarget(
                        title=self._localizer.localize(f"Direct stream ({label})"),
                        url=self._library.stream_url(decoded.episode_id, session.token),
                    )
                ]
            if kind == "movie":
                return [
                    StreamTarget(
                        title=self._localizer.localize("Direct stream (Movie)"),
                        url=self._library.stream_url(decoded.item_id, session.token),
                    )
                ]
            return await self._series_streams(decoded.item_id)
        except _RECOVERABLE_ERRORS as exc:
            logger.warning("Stream resolution for %s failed: %s", media_id, exc)
            return []

    async def _movie_meta(self, media_id: str, decoded: MediaId) -> CanonicalMeta:
        item = await self._library.get_item(decoded.item_id)
        session = await self._sessions.ensure_authenticated()
        match = await self._safe_lookup(item, is_movie=True)
        return CanonicalMeta(
            id=media_id,
            type="movie",
            **self._merge_fields(item, match, session.token),
            runtime=ticks_to_minutes(item.runtime_ticks),
            genres=item.genres or None,
        )

    async def _series_meta(self, media_id: str, decoded: MediaId) -> CanonicalMeta:
        item = await self._library.get_item(decoded.item_id)
        episodes = await self._library.list_episodes(decoded.item_id)
        session = await self._sessions.ensure_authenticated()
        match = await self._safe_lookup(item, is_movie=False)
        logger.info("Series %s has %s episodes", item.name, len(episodes))

        videos = sorted(
            (
                Video(
                    id=encode_episode_id(
                        item.id, episode.season_index, episode.episode_index, episode.id
                    ),
                    title=episode.name,
                    season=episode.season_index,
                    episode=episode.episode_index,
                    released=episode.premiere_date,
                    thumbnail=self._library.poster_url(episode, session.token, 350),
                )
                for episode in episodes
            ),
            key=Video.sort_key,
        )
        return CanonicalMeta(
            id=media_id,
            type="series",
            **self._merge_fields(item, match, session.token),
            genres=item.genres or None,
            videos=videos,
        )

    async def _series_streams(self, series_id: str) -> list[StreamTarget]:
        session = await self._sessions.ensure_authenticated()
        groups = await self._library.resolve_seasons_then_episodes(series_id)
        streams: list[StreamTarget] = []
        for group in groups:
            for episode in group.episodes:
                season = episode.season_index
                if season is None:
                    season = group.season
                label = _episode_label(season, episode.episode_index)
                streams.append(
                    StreamTarget(
                        title=f"{label} {episode.name}".strip(),
                        url=self._library.stream_url(episode.id, session.token),
                    )
                )
        return streams

    def _merge_fields(
        self, item: LibraryItem, match: MetadataRecord | None, token: str
    ) -> dict[str, object]:
        """Combine library and lookup fields, preferring the lookup result."""

        if match is None:
            match = MetadataRecord(title=item.name)
        return {
            "name": match.title or item.name,
            "poster": match.poster or self._library.poster_url(item, token, 700),
            "background": match.backdrop
            or self._library.backdrop_url(item, token, 1920),
            "description": match.overview or item.overview,
            "release_info": str(item.year) if item.year else None,
            "rating": match.rating,
        }

    async def _safe_lookup(
        self, item: LibraryItem, *, is_movie: bool
    ) -> MetadataRecord | None:
        try:
            return await self._metadata.lookup(item.name, item.year, is_movie)
        except _RECOVERABLE_ERRORS as exc:
            logger.warning("Metadata lookup for %s failed: %s", item.name, exc)
            return None


def _episode_label(season: int | None, episode: int | None) -> str:
    if season is None and episode is None:
        return "Episode"
    return f"S{season or 0:02d}E{episode or 0:02d}"
