"""Shared fixtures: in-memory database and fake catalog collaborators."""

from collections.abc import Awaitable, Callable, Generator
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from catalog_ingest.models import (
    CatalogCandidate,
    CatalogPage,
    GameDetail,
    ProgressSnapshot,
    ScreenshotRef,
)
from catalog_ingest.services.catalog_repository import CatalogRepository
from catalog_ingest.services.database import create_database_engine, create_session_factory, init_database
from catalog_ingest.services.import_orchestrator import ImportOrchestrator
from catalog_ingest.services.import_state_repository import ImportStateRepository

PageHook = Callable[[], Awaitable[None]]


def make_candidate(
    number: int,
    quality: int | None = 85,
    screenshots: int | None = 3,
    slug: str | None = None,
) -> CatalogCandidate:
    return CatalogCandidate(
        external_id=1000 + number,
        slug=slug or f"game-{number}",
        name=f"Game {number}",
        released=f"20{number % 100:02d}-05-01",
        genres=("Action",),
        platforms=("PC",),
        quality_score=quality,
        cover_image_url=f"https://media.example.com/covers/{number}.jpg",
        screenshots_count=screenshots,
    )


class FakeCatalogClient:
    """Serves a fixed candidate list, sliced into pages of the requested size."""

    def __init__(self, candidates: list[CatalogCandidate], screenshots_per_game: int = 5) -> None:
        self.candidates = candidates
        self.screenshots_per_game = screenshots_per_game
        self.page_hooks: dict[int, PageHook] = {}
        self.failures: dict[tuple[str, int], Exception] = {}
        self.calls: list[tuple[str, int]] = []
        self.pages_report_total = True
        self.without_screenshots: set[int] = set()

    async def list_candidates(self, page: int, page_size: int, quality_floor: int) -> CatalogPage:
        self.calls.append(("list_candidates", page))
        self._maybe_fail("list_candidates", page)

        hook = self.page_hooks.pop(page, None)
        if hook is not None:
            await hook()

        start = (page - 1) * page_size
        end = start + page_size
        return CatalogPage(
            items=self.candidates[start:end],
            has_next_page=end < len(self.candidates),
            total_count=len(self.candidates) if self.pages_report_total else None,
        )

    async def fetch_detail(self, external_id: int) -> GameDetail:
        self.calls.append(("fetch_detail", external_id))
        self._maybe_fail("fetch_detail", external_id)
        return GameDetail(
            external_id=external_id,
            developer="Example Studio",
            publisher="Example Publishing",
        )

    async def list_screenshots(self, external_id: int) -> list[ScreenshotRef]:
        self.calls.append(("list_screenshots", external_id))
        self._maybe_fail("list_screenshots", external_id)
        if external_id in self.without_screenshots:
            return []
        return [
            ScreenshotRef(
                external_id=external_id * 10 + n,
                image_url=f"https://media.example.com/{external_id}/shot-{n}.jpg",
            )
            for n in range(self.screenshots_per_game)
        ]

    async def fetch_total_count(self, quality_floor: int) -> int:
        self.calls.append(("fetch_total_count", quality_floor))
        return len(self.candidates)

    def calls_to(self, method: str) -> list[int]:
        return [arg for name, arg in self.calls if name == method]

    def _maybe_fail(self, method: str, key: int) -> None:
        error = self.failures.get((method, key))
        if error is not None:
            raise error


class FakeDownloader:
    """Records downloads; URLs in ``failing_urls`` report failure."""

    def __init__(self) -> None:
        self.failing_urls: set[str] = set()
        self.downloads: list[tuple[str, Path]] = []

    async def download(self, source_url: str, destination: Path) -> bool:
        self.downloads.append((source_url, destination))
        return source_url not in self.failing_urls


class RecordingReporter:
    def __init__(self) -> None:
        self.snapshots: list[ProgressSnapshot] = []

    def publish(self, import_state_id: int, snapshot: ProgressSnapshot) -> None:
        self.snapshots.append(snapshot)


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    engine = create_database_engine("sqlite:///:memory:")
    init_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return create_session_factory(engine)


@pytest.fixture
def state_repository(session_factory: sessionmaker) -> ImportStateRepository:
    return ImportStateRepository(session_factory)


@pytest.fixture
def catalog_repository(session_factory: sessionmaker) -> CatalogRepository:
    return CatalogRepository(session_factory)


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture
def catalog() -> FakeCatalogClient:
    return FakeCatalogClient([make_candidate(n) for n in range(1, 5)])


@pytest.fixture
def orchestrator(
    catalog: FakeCatalogClient,
    downloader: FakeDownloader,
    state_repository: ImportStateRepository,
    catalog_repository: CatalogRepository,
    reporter: RecordingReporter,
    tmp_path: Path,
) -> ImportOrchestrator:
    return ImportOrchestrator(
        catalog_client=catalog,
        downloader=downloader,
        state_repository=state_repository,
        catalog_repository=catalog_repository,
        reporter=reporter,
        assets_directory=tmp_path / "screenshots",
    )
