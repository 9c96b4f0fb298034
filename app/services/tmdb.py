"""Utilities for resolving metadata from The Movie Database (TMDB)."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import UpstreamError
from ..models import MetadataRecord
from .cache import CacheStore
from .localization import Localizer, localizer_for

logger = logging.getLogger(__name__)

IMAGE_BASE_URL = "https://image.tmdb.org/t/p/original"


class TMDBClient:
    """Looks up localized titles, artwork and ratings for library items.

    Enrichment is optional: without an API key every lookup returns ``None``.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        cache: CacheStore,
        localizer: Localizer | None = None,
    ):
        self._settings = settings
        self._client = http_client
        self._cache = cache
        self._localizer = localizer or localizer_for(settings.tmdb_language)

    @property
    def enabled(self) -> bool:
        return bool(self._settings.tmdb_api_key)

    @staticmethod
    def cache_key(title: str, year: int | str | None, is_movie: bool) -> str:
        kind = "m" if is_movie else "s"
        return f"metadata-lookup:{kind}|{title}|{year or ''}"

    async def lookup(
        self, title: str, year: int | None, is_movie: bool = True
    ) -> MetadataRecord | None:
        """Return metadata for the first search hit, or ``None``."""

        if not self.enabled or not (title or "").strip():
            return None

        async def fetch() -> dict[str, Any] | None:
            return await self._search(title, year, is_movie)

        try:
            raw = await self._cache.get_or_fetch(
                self.cache_key(title, year, is_movie),
                self._settings.metadata_cache_seconds,
                fetch,
            )
        except UpstreamError as exc:
            logger.warning("TMDB lookup failed for %s (%s): %s", title, year, exc)
            return None
        if raw is None:
            return None
        try:
            return MetadataRecord.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Ignoring malformed cached metadata for %s: %s", title, exc)
            return None

    async def _search(
        self, title: str, year: int | None, is_movie: bool
    ) -> dict[str, Any] | None:
        endpoint = "/search/movie" if is_movie else "/search/tv"
        params: dict[str, Any] = {
            "api_key": self._settings.tmdb_api_key,
            "query": title,
            "language": self._settings.tmdb_language,
            "include_adult": "false",
        }
        if year:
            params["year" if is_movie else "first_air_date_year"] = str(year)

        url = f"{str(self._settings.tmdb_api_url).rstrip('/')}{endpoint}"
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"TMDB unreachable: {exc}") from exc
        if response.status_code >= 400:
            raise UpstreamError(
                f"TMDB search for {title} failed: HTTP {response.status_code}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError("TMDB returned non-JSON payload") from exc

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list) or not results:
            return None
        hit = results[0]
        if not isinstance(hit, dict):
            return None
        return self._normalize(hit, title, year)

    def _normalize(
        self, hit: dict[str, Any], title: str, year: int | None
    ) -> dict[str, Any]:
        overview = hit.get("overview") or None
        if overview:
            overview = self._localizer.localize(overview)
        record = MetadataRecord(
            title=hit.get("title") or hit.get("name") or title,
            overview=overview,
            poster=self._build_image_url(hit.get("poster_path")),
            backdrop=self._build_image_url(hit.get("backdrop_path")),
            year=self._extract_year(hit) or year,
            rating=self._normalize_rating(hit.get("vote_average")),
        )
        return record.model_dump()

    @staticmethod
    def _extract_year(result: dict[str, Any]) -> int | None:
        date_value = result.get("release_date") or result.get("first_air_date")
        if not isinstance(date_value, str) or len(date_value) < 4:
            return None
        try:
            return int(date_value[:4])
        except ValueError:
            return None

    @staticmethod
    def _normalize_rating(value: Any) -> float | None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return round(min(max(float(value), 0.0), 10.0), 1)

    @staticmethod
    def _build_image_url(path: Any) -> str | None:
        if not isinstance(path, str) or not path:
            return None
        if path.startswith("http"):
            return path
        return f"{IMAGE_BASE_URL}{path}"
