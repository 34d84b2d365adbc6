"""Persistence adapter for catalog games and screenshots."""

from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..models import GameRecord, ScreenshotRecord
from .database import GameRow, ScreenshotRow
from .errors import PersistenceError

log = structlog.stdlib.get_logger()


class CatalogRepository:
    """Reads and writes catalog records on behalf of the importer.

    The importer only creates records; editing and deletion belong to the
    surrounding application.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Session]:
        try:
            with self._session_factory.begin() as session:
                yield session
        except SQLAlchemyError as e:
            log.error("Catalog persistence failed", operation=operation, error=str(e))
            raise PersistenceError(
                f"Failed to {operation.replace('_', ' ')}",
                operation=operation,
                original_error=e,
            ) from e

    def find_game_by_slug_or_external_id(
        self,
        slug: str,
        external_id: int | None = None,
    ) -> GameRecord | None:
        condition = GameRow.slug == slug
        if external_id is not None:
            condition = or_(condition, GameRow.external_id == external_id)

        with self._transaction("find_game") as session:
            row = session.execute(select(GameRow).where(condition).limit(1)).scalar_one_or_none()
            return _to_game(row) if row else None

    def create_game(self, record: GameRecord) -> GameRecord:
        row = GameRow(
            slug=record.slug,
            external_id=record.external_id,
            name=record.name,
            release_year=record.release_year,
            developer=record.developer,
            publisher=record.publisher,
            genres=list(record.genres),
            platforms=list(record.platforms),
            cover_image_url=record.cover_image_url,
            quality_score=record.quality_score,
        )
        with self._transaction("create_game") as session:
            session.add(row)
            session.flush()
            created = _to_game(row)

        log.debug("Game created", game_id=created.id, slug=created.slug)
        return created

    def create_screenshots(self, game_id: int, records: list[ScreenshotRecord]) -> list[ScreenshotRecord]:
        if not records:
            return []

        rows = [
            ScreenshotRow(
                game_id=game_id,
                local_path=record.local_path,
                source_url=record.source_url,
                difficulty=record.difficulty,
            )
            for record in records
        ]
        with self._transaction("create_screenshots") as session:
            session.add_all(rows)
            session.flush()
            created = [_to_screenshot(row) for row in rows]

        log.debug("Screenshots created", game_id=game_id, count=len(created))
        return created

    def count_games(self) -> int:
        with self._transaction("count_games") as session:
            return session.execute(select(func.count()).select_from(GameRow)).scalar_one()

    def list_screenshots(self, game_id: int) -> list[ScreenshotRecord]:
        stmt = select(ScreenshotRow).where(ScreenshotRow.game_id == game_id).order_by(ScreenshotRow.id)
        with self._transaction("list_screenshots") as session:
            return [_to_screenshot(row) for row in session.execute(stmt).scalars()]


def _to_game(row: GameRow) -> GameRecord:
    return GameRecord(
        id=row.id,
        slug=row.slug,
        external_id=row.external_id,
        name=row.name,
        release_year=row.release_year,
        developer=row.developer,
        publisher=row.publisher,
        genres=list(row.genres or []),
        platforms=list(row.platforms or []),
        cover_image_url=row.cover_image_url,
        quality_score=row.quality_score,
        created_at=row.created_at,
    )


def _to_screenshot(row: ScreenshotRow) -> ScreenshotRecord:
    return ScreenshotRecord(
        id=row.id,
        game_id=row.game_id,
        local_path=row.local_path,
        source_url=row.source_url,
        difficulty=row.difficulty,
        created_at=row.created_at,
    )
