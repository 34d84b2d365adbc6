"""Database engine, session factory and table definitions."""

from datetime import datetime, timezone

import structlog
from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from ..models import FULL_IMPORT, ImportStatus

log = structlog.stdlib.get_logger()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class ImportStateRow(Base):
    """One row per import job: configuration, counters and lifecycle timestamps."""

    __tablename__ = "import_states"

    id: Mapped[int] = mapped_column(primary_key=True)
    import_type: Mapped[str] = mapped_column(String(50), default=FULL_IMPORT)
    status: Mapped[str] = mapped_column(String(50), default=ImportStatus.PENDING.value, index=True)

    # Configuration
    batch_size: Mapped[int] = mapped_column(Integer)
    min_quality_threshold: Mapped[int] = mapped_column(Integer)
    screenshots_per_game: Mapped[int] = mapped_column(Integer)
    target_candidates: Mapped[int | None] = mapped_column(Integer)

    # Progress tracking
    total_candidates_available: Mapped[int | None] = mapped_column(Integer)
    current_page: Mapped[int] = mapped_column(Integer, default=1)
    last_processed_offset: Mapped[int] = mapped_column(Integer, default=0)
    games_processed: Mapped[int] = mapped_column(Integer, default=0)
    games_imported: Mapped[int] = mapped_column(Integer, default=0)
    games_skipped: Mapped[int] = mapped_column(Integer, default=0)
    screenshots_downloaded: Mapped[int] = mapped_column(Integer, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, default=0)

    # Batch tracking
    current_batch: Mapped[int] = mapped_column(Integer, default=0)
    total_batches_estimated: Mapped[int | None] = mapped_column(Integer)

    cancel_requested: Mapped[bool] = mapped_column(Boolean, default=False)
    error_message: Mapped[str | None] = mapped_column(Text)

    # Timestamps
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    paused_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    resumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class GameRow(Base):
    """Catalog game, keyed by its natural slug."""

    __tablename__ = "games"

    id: Mapped[int] = mapped_column(primary_key=True)
    slug: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    external_id: Mapped[int | None] = mapped_column(Integer, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(500))
    release_year: Mapped[int | None] = mapped_column(Integer)
    developer: Mapped[str | None] = mapped_column(String(255))
    publisher: Mapped[str | None] = mapped_column(String(255))
    genres: Mapped[list[str]] = mapped_column(JSON, default=list)
    platforms: Mapped[list[str]] = mapped_column(JSON, default=list)
    cover_image_url: Mapped[str | None] = mapped_column(String(1000))
    quality_score: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    screenshots: Mapped[list["ScreenshotRow"]] = relationship(
        back_populates="game", cascade="all, delete-orphan"
    )


class ScreenshotRow(Base):
    """Locally stored screenshot of a catalog game."""

    __tablename__ = "screenshots"

    id: Mapped[int] = mapped_column(primary_key=True)
    game_id: Mapped[int] = mapped_column(ForeignKey("games.id"), index=True)
    local_path: Mapped[str] = mapped_column(String(1000))
    source_url: Mapped[str] = mapped_column(String(1000))
    difficulty: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    game: Mapped[GameRow] = relationship(back_populates="screenshots")


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; in-memory SQLite gets a single shared connection."""
    if database_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_database(engine: Engine) -> None:
    """Create missing tables."""
    Base.metadata.create_all(bind=engine)
    log.info("Database initialized", url=engine.url.render_as_string(hide_password=True))
