"""Catalog data models: provider-side candidates and persisted catalog records."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class ScreenshotRef:
    """A screenshot reference returned by the catalog provider."""
    external_id: int
    image_url: str
    width: int | None = None
    height: int | None = None


@dataclass(frozen=True)
class CatalogCandidate:
    """One page-result entry, not yet accepted or rejected."""
    external_id: int
    slug: str
    name: str
    released: str | None = None  # ISO date string as returned by the provider
    developer: str | None = None
    publisher: str | None = None
    genres: tuple[str, ...] = ()
    platforms: tuple[str, ...] = ()
    quality_score: int | None = None  # 0-100 scale
    cover_image_url: str | None = None
    screenshots_count: int | None = None  # None when the listing does not say

    @property
    def release_year(self) -> int | None:
        if not self.released or len(self.released) < 4:
            return None
        try:
            return int(self.released[:4])
        except ValueError:
            return None


@dataclass(frozen=True)
class CatalogPage:
    """One page of candidates from the catalog provider."""
    items: list[CatalogCandidate]
    has_next_page: bool
    total_count: int | None = None


@dataclass(frozen=True)
class GameDetail:
    """Per-game enrichment fetched for accepted candidates."""
    external_id: int
    developer: str | None = None
    publisher: str | None = None
    quality_score: int | None = None


@dataclass(frozen=True)
class GameRecord:
    """A persisted catalog game."""
    slug: str
    name: str
    external_id: int | None = None
    release_year: int | None = None
    developer: str | None = None
    publisher: str | None = None
    genres: list[str] = field(default_factory=list)
    platforms: list[str] = field(default_factory=list)
    cover_image_url: str | None = None
    quality_score: int | None = None
    id: int | None = None  # Assigned on insert
    created_at: datetime | None = None


@dataclass(frozen=True)
class ScreenshotRecord:
    """A persisted screenshot belonging to a GameRecord."""
    local_path: str  # Public path served by the application
    source_url: str
    difficulty: int  # 1-3
    game_id: int | None = None
    id: int | None = None
    created_at: datetime | None = None
