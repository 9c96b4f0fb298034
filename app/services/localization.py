"""Text normalization strategies applied to metadata overviews and labels."""

from __future__ import annotations

import re
from typing import Mapping, Protocol


class Localizer(Protocol):
    def localize(self, text: str) -> str: ...


class PassthroughLocalizer:
    """Leaves text untouched."""

    def localize(self, text: str) -> str:
        return text


class TermSubstitutionLocalizer:
    """Swaps known English domain terms for their localized equivalents.

    Text that already contains characters specific to the target locale is
    assumed to be localized and returned unchanged.
    """

    def __init__(self, locale_characters: str, terms: Mapping[str, str]):
        self._locale_characters = frozenset(locale_characters)
        self._terms = dict(terms)
        pattern = "|".join(re.escape(term) for term in sorted(terms, key=len, reverse=True))
        self._pattern = re.compile(rf"\b({pattern})\b") if pattern else None

    def is_localized(self, text: str) -> bool:
        return any(char in self._locale_characters for char in text)

    def localize(self, text: str) -> str:
        if not text or self._pattern is None or self.is_localized(text):
            return text
        return self._pattern.sub(lambda match: self._terms[match.group(1)], text)


SWEDISH_TERMS: dict[str, str] = {
    "Direct stream": "Direktström",
    "Season": "Säsong",
    "Episode": "Avsnitt",
    "Movie": "Film",
    "Overview": "Översikt",
}

SWEDISH = TermSubstitutionLocalizer("åäöÅÄÖ", SWEDISH_TERMS)


def localizer_for(language: str | None) -> Localizer:
    """Return the normalization strategy for a TMDB language code."""

    if language and language.lower().startswith("sv"):
        return SWEDISH
    return PassthroughLocalizer()
