"""Import job state models."""

from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum


class ImportStatus(Enum):
    """Lifecycle status of an import job."""
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = frozenset({ImportStatus.PENDING, ImportStatus.RUNNING, ImportStatus.PAUSED})
TERMINAL_STATUSES = frozenset({ImportStatus.COMPLETED, ImportStatus.FAILED})

FULL_IMPORT = "full-import"


@dataclass(frozen=True)
class ImportProgress:
    """Checkpoint patch: every counter and offset, written in one update."""
    current_page: int
    last_processed_offset: int
    games_processed: int
    games_imported: int
    games_skipped: int
    screenshots_downloaded: int
    failed_count: int
    current_batch: int
    total_candidates_available: int | None = None
    total_batches_estimated: int | None = None

    def as_patch(self) -> dict[str, int | None]:
        patch = {f.name: getattr(self, f.name) for f in fields(self)}
        # Totals are only known after the first page; never null them out again
        for key in ("total_candidates_available", "total_batches_estimated"):
            if patch[key] is None:
                del patch[key]
        return patch


@dataclass(frozen=True)
class ImportState:
    """Snapshot of a persisted import job."""
    id: int
    status: ImportStatus
    batch_size: int
    min_quality_threshold: int
    screenshots_per_game: int
    import_type: str = FULL_IMPORT
    target_candidates: int | None = None
    total_candidates_available: int | None = None
    current_page: int = 1
    last_processed_offset: int = 0
    games_processed: int = 0
    games_imported: int = 0
    games_skipped: int = 0
    screenshots_downloaded: int = 0
    failed_count: int = 0
    current_batch: int = 0
    total_batches_estimated: int | None = None
    cancel_requested: bool = False
    error_message: str | None = None
    started_at: datetime | None = None
    paused_at: datetime | None = None
    resumed_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def progress_percent(self) -> float:
        """Share of available candidates processed, 0.0 while the total is unknown."""
        total = self.total_candidates_available
        if self.target_candidates is not None:
            total = self.target_candidates if total is None else min(total, self.target_candidates)
        if not total:
            return 0.0
        return min(100.0, round(self.games_processed / total * 100, 1))

    def progress(self) -> ImportProgress:
        """Current counters as a checkpoint patch."""
        return ImportProgress(
            current_page=self.current_page,
            last_processed_offset=self.last_processed_offset,
            games_processed=self.games_processed,
            games_imported=self.games_imported,
            games_skipped=self.games_skipped,
            screenshots_downloaded=self.screenshots_downloaded,
            failed_count=self.failed_count,
            current_batch=self.current_batch,
            total_candidates_available=self.total_candidates_available,
            total_batches_estimated=self.total_batches_estimated,
        )
