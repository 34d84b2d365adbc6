"""Progress reporting for import jobs."""

from collections.abc import Callable
from typing import Protocol

import structlog

from ..models import TERMINAL_STATUSES, ImportState, ProgressSnapshot

log = structlog.stdlib.get_logger()

ProgressObserver = Callable[[int, ProgressSnapshot], None]

_TERMINAL_STATUS_VALUES = frozenset(status.value for status in TERMINAL_STATUSES)


class ProgressReporter(Protocol):
    """Sink for progress snapshots.

    Implementations must not block; the importer treats a raising reporter
    as a lost event, never as a job failure.
    """

    def publish(self, import_state_id: int, snapshot: ProgressSnapshot) -> None:
        ...


class LoggingProgressReporter:
    """Writes every snapshot to the structured log."""

    def publish(self, import_state_id: int, snapshot: ProgressSnapshot) -> None:
        log.info(
            snapshot.message,
            import_state_id=import_state_id,
            status=snapshot.status,
            processed=snapshot.games_processed,
            imported=snapshot.games_imported,
            skipped=snapshot.games_skipped,
            screenshots=snapshot.screenshots_downloaded,
            failed=snapshot.failed_count,
            batch=snapshot.current_batch,
            total_batches=snapshot.total_batches_estimated,
            percent=snapshot.progress_percent,
            eta=snapshot.eta,
        )


class BroadcastProgressReporter:
    """Fans snapshots out to any number of subscribed observers."""

    def __init__(self) -> None:
        self._observers: list[ProgressObserver] = []
        self.last_snapshot: dict[int, ProgressSnapshot] = {}

    def subscribe(self, observer: ProgressObserver) -> Callable[[], None]:
        """Register an observer.

        Returns:
            A callable that removes the observer again
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def publish(self, import_state_id: int, snapshot: ProgressSnapshot) -> None:
        self.last_snapshot[import_state_id] = snapshot
        for observer in list(self._observers):
            try:
                observer(import_state_id, snapshot)
            except Exception as e:
                log.warning(
                    "Progress observer failed",
                    import_state_id=import_state_id,
                    observer=getattr(observer, "__name__", repr(observer)),
                    error=str(e),
                )

        # Finished jobs publish nothing more
        if snapshot.status in _TERMINAL_STATUS_VALUES:
            self.last_snapshot.pop(import_state_id, None)


def format_duration(seconds: float) -> str:
    """Format a duration as ``1h 2m 3s``, dropping leading zero units."""
    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)

    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def estimate_remaining(processed: int, total: int | None, elapsed: float) -> float | None:
    """Seconds left at the current average pace, None when not yet measurable."""
    if not total or processed <= 0 or elapsed <= 0:
        return None
    remaining = max(0, total - processed)
    return remaining * (elapsed / processed)


def build_snapshot(
    state: ImportState,
    message: str,
    elapsed: float | None = None,
    processed_in_run: int | None = None,
) -> ProgressSnapshot:
    """Build a snapshot from an import state.

    Args:
        state: Current counters of the job
        message: Short human-readable status
        elapsed: Seconds spent by the current run, used for the ETA
        processed_in_run: Candidates handled by the current run; defaults to
            all processed candidates
    """
    total = state.total_candidates_available
    if state.target_candidates is not None:
        total = state.target_candidates if total is None else min(total, state.target_candidates)

    eta = None
    if elapsed is not None and total:
        run_processed = state.games_processed if processed_in_run is None else processed_in_run
        remaining_candidates = max(0, total - state.games_processed)
        seconds = estimate_remaining(run_processed, run_processed + remaining_candidates, elapsed)
        if seconds is not None:
            eta = format_duration(seconds)

    return ProgressSnapshot(
        import_state_id=state.id,
        status=state.status.value,
        message=message,
        games_processed=state.games_processed,
        games_imported=state.games_imported,
        games_skipped=state.games_skipped,
        screenshots_downloaded=state.screenshots_downloaded,
        failed_count=state.failed_count,
        current_batch=state.current_batch,
        current_page=state.current_page,
        total_batches_estimated=state.total_batches_estimated,
        total_candidates_available=state.total_candidates_available,
        progress_percent=state.progress_percent,
        eta=eta,
    )
