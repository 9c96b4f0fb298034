"""Pydantic models describing upstream records and addon payloads."""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

ContentType = Literal["movie", "series"]

LIBRARY_ITEM_TYPES: dict[str, str] = {"movie": "Movie", "series": "Series"}


class LibraryItem(BaseModel):
    """Raw item record returned by the Jellyfin API."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(alias="Id")
    name: str = Field(default="", alias="Name")
    type: str | None = Field(default=None, alias="Type")
    year: int | None = Field(default=None, alias="ProductionYear")
    primary_image_tag: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PrimaryImageTag", "primary_image_tag"),
    )
    image_tags: dict[str, str] = Field(default_factory=dict, alias="ImageTags")
    backdrop_image_tags: list[str] = Field(
        default_factory=list, alias="BackdropImageTags"
    )
    overview: str | None = Field(default=None, alias="Overview")
    genres: list[str] = Field(default_factory=list, alias="Genres")
    runtime_ticks: int | None = Field(default=None, alias="RunTimeTicks")
    premiere_date: str | None = Field(default=None, alias="PremiereDate")
    season_index: int | None = Field(default=None, alias="ParentIndexNumber")
    episode_index: int | None = Field(default=None, alias="IndexNumber")
    series_id: str | None = Field(default=None, alias="SeriesId")
    season_id: str | None = Field(default=None, alias="SeasonId")

    @property
    def primary_tag(self) -> str | None:
        """Return the primary image tag from whichever field carries it."""

        return self.primary_image_tag or self.image_tags.get("Primary")

    @classmethod
    def from_payloads(cls, payloads: Any) -> list["LibraryItem"]:
        """Parse a list of raw item dictionaries, skipping unusable entries."""

        if not isinstance(payloads, list):
            return []
        items: list[LibraryItem] = []
        for entry in payloads:
            if not isinstance(entry, dict) or not entry.get("Id"):
                continue
            try:
                items.append(cls.model_validate(entry))
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed library item %s: %s", entry.get("Id"), exc
                )
        return items


class SeasonEpisodes(BaseModel):
    """Episodes grouped under a single season index."""

    season: int | None = None
    episodes: list[LibraryItem] = Field(default_factory=list)


class MetadataRecord(BaseModel):
    """Normalized metadata lookup result."""

    title: str
    overview: str | None = None
    poster: str | None = None
    backdrop: str | None = None
    year: int | None = None
    rating: float | None = Field(default=None, ge=0.0, le=10.0)


class CatalogEntry(BaseModel):
    """Summary card returned in catalog listings."""

    id: str
    type: ContentType
    name: str
    poster: str | None = None
    poster_shape: str = Field(default="regular", serialization_alias="posterShape")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Video(BaseModel):
    """A single episode entry within a series meta object."""

    id: str
    title: str
    season: int | None = None
    episode: int | None = None
    released: str | None = None
    thumbnail: str | None = None

    def sort_key(self) -> tuple[int, int]:
        return (self.season or 0, self.episode or 0)


class CanonicalMeta(BaseModel):
    """Merged metadata object served from the meta endpoint."""

    id: str
    type: ContentType
    name: str
    poster: str | None = None
    background: str | None = None
    description: str | None = None
    release_info: str | None = Field(default=None, serialization_alias="releaseInfo")
    runtime: int | None = None
    genres: list[str] | None = None
    rating: float | None = Field(default=None, serialization_alias="imdbRating")
    videos: list[Video] | None = None

    @classmethod
    def placeholder(cls, media_id: str, content_type: ContentType) -> "CanonicalMeta":
        """Return the minimal meta object used when resolution fails."""

        return cls(id=media_id, type=content_type, name="Unavailable")

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(by_alias=True, exclude_none=True)
        if self.rating is not None:
            payload["imdbRating"] = f"{self.rating:.1f}"
        return payload


class StreamTarget(BaseModel):
    """Playable direct-stream URL with a descriptive title."""

    name: str = "Direct Stream"
    title: str
    url: str

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump()
