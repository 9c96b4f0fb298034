"""Utility helpers for the Jellybridge service."""

from __future__ import annotations

import math
from dataclasses import dataclass

from .errors import NotFoundError

ID_PREFIX = "lib"
LEGACY_ID_PREFIXES = ("jf",)

TICKS_PER_SECOND = 10_000_000


def ticks_to_minutes(ticks: int | float | None) -> int | None:
    """Convert a runtime in 100-nanosecond ticks into whole minutes."""

    if not ticks or ticks <= 0:
        return None
    seconds = _round_half_up(ticks / TICKS_PER_SECOND)
    return max(1, _round_half_up(seconds / 60))


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


@dataclass(frozen=True, slots=True)
class MediaId:
    """Decoded form of the opaque identifiers handed out to the addon client."""

    item_id: str
    season: int | None = None
    episode: int | None = None
    episode_id: str | None = None

    @property
    def is_episode(self) -> bool:
        return self.episode_id is not None

    def encode(self) -> str:
        if self.episode_id is None:
            return encode_item_id(self.item_id)
        return encode_episode_id(
            self.item_id, self.season, self.episode, self.episode_id
        )


def encode_item_id(item_id: str) -> str:
    return f"{ID_PREFIX}:{item_id}"


def encode_episode_id(
    series_id: str,
    season: int | None,
    episode: int | None,
    episode_id: str,
) -> str:
    season_part = "" if season is None else str(season)
    episode_part = "" if episode is None else str(episode)
    return f"{ID_PREFIX}:{series_id}:{season_part}:{episode_part}:{episode_id}"


def decode_media_id(value: str) -> MediaId:
    """Parse an opaque identifier back into its library components."""

    parts = (value or "").split(":")
    if parts[0] != ID_PREFIX and parts[0] not in LEGACY_ID_PREFIXES:
        raise NotFoundError(f"Unrecognised id {value!r}")
    if len(parts) == 2 and parts[1]:
        return MediaId(item_id=parts[1])
    if len(parts) == 5 and parts[1] and parts[4]:
        return MediaId(
            item_id=parts[1],
            season=_parse_index(parts[2]),
            episode=_parse_index(parts[3]),
            episode_id=parts[4],
        )
    raise NotFoundError(f"Malformed id {value!r}")


def _parse_index(value: str) -> int | None:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None
