"""Progress tracking data models."""

from dataclasses import dataclass


@dataclass(frozen=True)
class ProgressSnapshot:
    """Progress information published after each unit of import work."""
    import_state_id: int
    status: str
    message: str
    games_processed: int
    games_imported: int
    games_skipped: int
    screenshots_downloaded: int
    failed_count: int
    current_batch: int
    current_page: int
    total_batches_estimated: int | None = None
    total_candidates_available: int | None = None
    progress_percent: float = 0.0
    eta: str | None = None  # Human-readable estimate, None until measurable
