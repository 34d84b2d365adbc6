"""Import orchestrator: the resumable batch loop and its job state machine."""

import asyncio
import math
import time
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

import structlog

from ..models import (
    CatalogCandidate,
    GameRecord,
    ImportConfig,
    ImportState,
    ImportStatus,
    ScreenshotRecord,
)
from .asset_downloader import AssetDownloader
from .catalog_client import CatalogClient
from .catalog_repository import CatalogRepository
from .database import utcnow
from .errors import (
    AppError,
    ImportFailedError,
    ImportNotFoundError,
    InvalidImportStateError,
    PersistenceError,
    ValidationError,
    handle_error,
)
from .import_state_repository import ImportStateRepository
from .progress import ProgressReporter, build_snapshot

log = structlog.stdlib.get_logger()

CANCELLED_MESSAGE = "Import cancelled"
DIFFICULTY_TIERS = 3

RUNNING = ImportStatus.RUNNING
PAUSED = ImportStatus.PAUSED


class ImportOrchestrator:
    """Drives import jobs through pending, running, paused and a terminal status.

    One asyncio task runs the batch loop of a running job. The loop only
    stops at page boundaries, after the checkpoint of the page it just
    finished, so a pause or cancel never leaves a game half imported.
    Pause and cancel requests are read back from the persisted job, which
    lets another process control a job this process is running.
    """

    def __init__(
        self,
        catalog_client: CatalogClient,
        downloader: AssetDownloader,
        state_repository: ImportStateRepository,
        catalog_repository: CatalogRepository,
        reporter: ProgressReporter,
        assets_directory: Path,
        public_asset_prefix: str = "/uploads/screenshots",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            catalog_client: Rate-limited catalog API client
            downloader: Downloader for screenshot assets
            state_repository: Persistence for import jobs
            catalog_repository: Persistence for games and screenshots
            reporter: Receives a snapshot after each unit of work
            assets_directory: Root directory screenshots are written to
            public_asset_prefix: URL prefix stored as the screenshot path
            clock: Monotonic clock used for ETA estimates
        """
        self._catalog = catalog_client
        self._downloader = downloader
        self._states = state_repository
        self._games = catalog_repository
        self._reporter = reporter
        self._assets_directory = assets_directory
        self._public_asset_prefix = public_asset_prefix.rstrip("/")
        self._clock = clock

        self._tasks: dict[int, asyncio.Task[ImportState]] = {}

    # Job control

    async def start_import(self, config: ImportConfig | None = None) -> ImportState:
        """Create a job and start its batch loop in the background.

        Returns:
            The job, already running

        Raises:
            ValidationError: If the configuration is out of bounds
            ImportInProgressError: If a pending, running or paused job exists
        """
        config = config or ImportConfig()
        errors = config.validation_errors()
        if errors:
            raise ValidationError(
                f"Invalid import configuration: {'; '.join(errors)}",
                field="import_config",
                value=config,
                constraints=errors,
            )

        created = self._states.create_import_state(config)
        state = self._states.transition(created.id, {ImportStatus.PENDING}, RUNNING, started_at=utcnow())
        if state is None:
            raise self._invalid_state(created.id, "start", [ImportStatus.PENDING])

        log.info(
            "Import started",
            import_state_id=state.id,
            batch_size=state.batch_size,
            screenshots_per_game=state.screenshots_per_game,
            min_quality_threshold=state.min_quality_threshold,
            target_candidates=state.target_candidates,
        )
        self._publish(state, "Import started")
        self._launch(state.id)
        return state

    async def pause_import(self, import_state_id: int) -> ImportState:
        """Ask a running job to stop after its current page."""
        self._require(import_state_id)
        state = self._states.transition(import_state_id, {RUNNING}, PAUSED, paused_at=utcnow())
        if state is None:
            raise self._invalid_state(import_state_id, "pause", [RUNNING])

        log.info("Import pause requested", import_state_id=import_state_id)
        self._publish(state, "Pause requested")
        return state

    async def resume_import(self, import_state_id: int) -> ImportState:
        """Continue a paused job from its last checkpoint."""
        self._require(import_state_id)
        state = self._states.transition(import_state_id, {PAUSED}, RUNNING, resumed_at=utcnow())
        if state is None:
            raise self._invalid_state(import_state_id, "resume", [PAUSED])

        log.info(
            "Import resumed",
            import_state_id=import_state_id,
            current_page=state.current_page,
            last_processed_offset=state.last_processed_offset,
        )
        self._publish(state, "Import resumed")
        # A loop that has not reached its page boundary yet simply carries on
        self._launch(import_state_id)
        return state

    async def cancel_import(self, import_state_id: int) -> ImportState:
        """Cancel a running or paused job.

        A paused job fails immediately. A running job is flagged and fails
        at its next page boundary.
        """
        state = self._require(import_state_id)

        if state.status == PAUSED:
            failed = self._states.transition(
                import_state_id,
                {PAUSED},
                ImportStatus.FAILED,
                error_message=CANCELLED_MESSAGE,
                completed_at=utcnow(),
            )
            if failed is not None:
                log.info("Paused import cancelled", import_state_id=import_state_id)
                self._publish(failed, CANCELLED_MESSAGE)
                return failed
            state = self._require(import_state_id)

        if state.status == RUNNING:
            flagged = self._states.transition(import_state_id, {RUNNING}, RUNNING, cancel_requested=True)
            if flagged is not None:
                log.info("Import cancel requested", import_state_id=import_state_id)
                self._publish(flagged, "Cancel requested")
                return flagged

        raise self._invalid_state(import_state_id, "cancel", [RUNNING, PAUSED])

    async def recover_import(self, import_state_id: int) -> ImportState:
        """Re-attach a batch loop to a job whose process died.

        Jobs left running continue from their last checkpoint; a job left
        pending by a crash right after creation is started.
        """
        state = self._require(import_state_id)

        task = self._tasks.get(import_state_id)
        if task is not None and not task.done():
            log.info("Import already has a running loop", import_state_id=import_state_id)
            return state

        if state.status == ImportStatus.PENDING:
            started = self._states.transition(
                import_state_id, {ImportStatus.PENDING}, RUNNING, started_at=utcnow()
            )
            if started is not None:
                state = started
        if state.status != RUNNING:
            raise self._invalid_state(import_state_id, "recover", [ImportStatus.PENDING, RUNNING])

        log.warning(
            "Recovering import",
            import_state_id=import_state_id,
            current_page=state.current_page,
            last_processed_offset=state.last_processed_offset,
        )
        self._publish(state, "Import recovered")
        self._launch(import_state_id)
        return state

    async def wait_for_import(self, import_state_id: int) -> ImportState:
        """Wait until the in-process loop of a job stops.

        Returns immediately with the persisted job when no loop runs here.

        Raises:
            ImportFailedError: If the loop aborted the job
        """
        task = self._tasks.get(import_state_id)
        if task is None:
            return self._require(import_state_id)
        return await task

    def get_active_import(self) -> ImportState | None:
        return self._states.get_active_import_state()

    def get_import_state(self, import_state_id: int) -> ImportState | None:
        return self._states.get_import_state(import_state_id)

    def list_imports(self, limit: int = 20, offset: int = 0) -> list[ImportState]:
        return self._states.list_import_states(limit=limit, offset=offset)

    # Batch loop

    async def run_import(self, import_state_id: int) -> ImportState:
        """Run the batch loop of a running job until it stops.

        Returns:
            The job as persisted when the loop stopped: completed, paused or
            failed by cancellation

        Raises:
            InvalidImportStateError: If the job is not running
            ImportFailedError: If a catalog or persistence error aborted the job
        """
        state = self._require(import_state_id)
        if state.status != RUNNING:
            raise self._invalid_state(import_state_id, "run", [RUNNING])

        run_started = self._clock()
        processed_before_run = state.games_processed

        def publish(current: ImportState, message: str) -> None:
            self._publish(
                current,
                message,
                elapsed=self._clock() - run_started,
                processed_in_run=current.games_processed - processed_before_run,
            )

        try:
            while True:
                page_number = state.current_page
                log.info(
                    "Fetching batch",
                    import_state_id=import_state_id,
                    page=page_number,
                    batch=state.current_batch + 1,
                )
                page = await self._catalog.list_candidates(
                    page_number, state.batch_size, state.min_quality_threshold
                )

                if state.total_candidates_available is None:
                    total_count = page.total_count
                    if total_count is None:
                        total_count = await self._catalog.fetch_total_count(state.min_quality_threshold)
                    state = replace(
                        state,
                        total_candidates_available=total_count,
                        total_batches_estimated=_estimate_batches(state, total_count),
                    )

                page_start = (page_number - 1) * state.batch_size
                handled = 0
                for index, candidate in enumerate(page.items):
                    if _target_reached(state):
                        break
                    offset = page_start + index
                    if offset < state.last_processed_offset:
                        continue

                    state = await self._process_candidate(state, candidate, offset)
                    handled += 1
                    publish(state, f"Processed {candidate.name}")

                has_next_page = page.has_next_page and bool(page.items)
                # A page re-fetched on resume with nothing left to handle was already counted
                already_counted = handled == 0 and bool(page.items) and page_start < state.last_processed_offset
                state = replace(
                    state,
                    current_page=page_number + 1 if has_next_page else page_number,
                    current_batch=state.current_batch if already_counted else state.current_batch + 1,
                )
                persisted = self._states.update_import_state(import_state_id, state.progress())
                if persisted is None:
                    # Finished elsewhere; never overwrite a terminal job
                    log.warning("Import finished outside this loop", import_state_id=import_state_id)
                    return self._require(import_state_id)
                state = persisted

                log.info(
                    "Batch checkpointed",
                    import_state_id=import_state_id,
                    batch=state.current_batch,
                    processed=state.games_processed,
                    imported=state.games_imported,
                    skipped=state.games_skipped,
                )
                publish(state, f"Batch {state.current_batch} complete")

                if state.status == PAUSED:
                    log.info("Import paused", import_state_id=import_state_id, current_page=state.current_page)
                    publish(state, "Import paused")
                    return state

                if not has_next_page or _target_reached(state) or _total_exhausted(state):
                    return self._complete(state, publish)

                if state.cancel_requested:
                    return self._cancel_running(state, publish)

                if state.status != RUNNING:
                    log.warning(
                        "Import no longer running, stopping loop",
                        import_state_id=import_state_id,
                        status=state.status.value,
                    )
                    return state

        except Exception as e:
            raise self._fail(state, e, publish) from e

    async def _process_candidate(self, state: ImportState, candidate: CatalogCandidate, offset: int) -> ImportState:
        """Handle one candidate and return the counters after it."""
        existing = self._games.find_game_by_slug_or_external_id(candidate.slug, candidate.external_id)
        if existing is not None:
            log.debug("Skipping existing game", slug=candidate.slug, game_id=existing.id)
            return _advance(state, offset, skipped=1)

        threshold = state.min_quality_threshold
        if threshold > 0 and (candidate.quality_score is None or candidate.quality_score < threshold):
            log.debug("Skipping below quality threshold", slug=candidate.slug, quality=candidate.quality_score)
            return _advance(state, offset, skipped=1)

        if candidate.screenshots_count == 0:
            log.debug("Skipping game without screenshots", slug=candidate.slug)
            return _advance(state, offset, skipped=1)

        screenshots = None
        if candidate.screenshots_count is None:
            screenshots = await self._catalog.list_screenshots(candidate.external_id)
            if not screenshots:
                log.debug("Skipping game without screenshots", slug=candidate.slug)
                return _advance(state, offset, skipped=1)

        detail = await self._catalog.fetch_detail(candidate.external_id)
        if screenshots is None:
            screenshots = await self._catalog.list_screenshots(candidate.external_id)
            # The listing's count can disagree with the actual screenshots
            if not screenshots:
                log.debug("Skipping game without screenshots", slug=candidate.slug)
                return _advance(state, offset, skipped=1)

        records: list[ScreenshotRecord] = []
        failed = 0
        for i, ref in enumerate(screenshots[: state.screenshots_per_game]):
            filename = f"screenshot_{i + 1}.jpg"
            destination = self._assets_directory / candidate.slug / filename
            if await self._downloader.download(ref.image_url, destination):
                records.append(
                    ScreenshotRecord(
                        local_path=f"{self._public_asset_prefix}/{candidate.slug}/{filename}",
                        source_url=ref.image_url,
                        difficulty=(i % DIFFICULTY_TIERS) + 1,
                    )
                )
            else:
                failed += 1

        game = self._games.create_game(
            GameRecord(
                slug=candidate.slug,
                name=candidate.name,
                external_id=candidate.external_id,
                release_year=candidate.release_year,
                developer=detail.developer or candidate.developer,
                publisher=detail.publisher or candidate.publisher,
                genres=list(candidate.genres),
                platforms=list(candidate.platforms),
                cover_image_url=candidate.cover_image_url,
                quality_score=detail.quality_score if detail.quality_score is not None else candidate.quality_score,
            )
        )
        self._games.create_screenshots(game.id, records)

        log.info(
            "Game imported",
            slug=candidate.slug,
            game_id=game.id,
            screenshots=len(records),
            failed_downloads=failed,
        )
        return _advance(state, offset, imported=1, screenshots=len(records), failed=failed)

    # Terminal transitions

    def _complete(self, state: ImportState, publish: Callable[[ImportState, str], None]) -> ImportState:
        completed = self._states.transition(state.id, {RUNNING}, ImportStatus.COMPLETED, completed_at=utcnow())
        if completed is None:
            return self._require(state.id)

        log.info(
            "Import completed",
            import_state_id=state.id,
            processed=completed.games_processed,
            imported=completed.games_imported,
            skipped=completed.games_skipped,
            screenshots=completed.screenshots_downloaded,
            failed=completed.failed_count,
        )
        publish(completed, "Import completed")
        return completed

    def _cancel_running(self, state: ImportState, publish: Callable[[ImportState, str], None]) -> ImportState:
        failed = self._states.transition(
            state.id, {RUNNING}, ImportStatus.FAILED, error_message=CANCELLED_MESSAGE, completed_at=utcnow()
        )
        if failed is None:
            return self._require(state.id)

        log.info("Import cancelled", import_state_id=state.id, processed=failed.games_processed)
        publish(failed, CANCELLED_MESSAGE)
        return failed

    def _fail(
        self,
        state: ImportState,
        error: Exception,
        publish: Callable[[ImportState, str], None],
    ) -> ImportFailedError:
        """Record a fatal error on the job and return the error to raise."""
        reason = str(error) or type(error).__name__
        handle_error(
            error,
            operation="run_import",
            component="import_orchestrator",
            context={"import_state_id": state.id, "page": state.current_page},
        )

        failed = None
        try:
            # In-memory counters reflect the last fully handled candidate
            self._states.update_import_state(state.id, state.progress())
            failed = self._states.transition(
                state.id,
                {RUNNING, PAUSED},
                ImportStatus.FAILED,
                error_message=reason,
                completed_at=utcnow(),
            )
        except PersistenceError as persist_error:
            log.error(
                "Could not record import failure",
                import_state_id=state.id,
                error=str(persist_error),
            )

        publish(failed or replace(state, status=ImportStatus.FAILED, error_message=reason), f"Import failed: {reason}")
        return ImportFailedError(state.id, reason)

    # Helpers

    def _launch(self, import_state_id: int) -> asyncio.Task[ImportState]:
        task = self._tasks.get(import_state_id)
        if task is not None and not task.done():
            return task

        task = asyncio.create_task(self.run_import(import_state_id), name=f"import-{import_state_id}")
        task.add_done_callback(self._on_task_done)
        self._tasks[import_state_id] = task
        return task

    @staticmethod
    def _on_task_done(task: asyncio.Task[ImportState]) -> None:
        if task.cancelled():
            log.warning("Import loop cancelled; job can be recovered", task=task.get_name())
            return
        error = task.exception()
        if error is not None and not isinstance(error, ImportFailedError):
            log.error("Import loop crashed", task=task.get_name(), error=str(error))

    def _publish(
        self,
        state: ImportState,
        message: str,
        elapsed: float | None = None,
        processed_in_run: int | None = None,
    ) -> None:
        try:
            self._reporter.publish(state.id, build_snapshot(state, message, elapsed, processed_in_run))
        except Exception as e:
            log.warning("Progress reporter failed", import_state_id=state.id, error=str(e))

    def _require(self, import_state_id: int) -> ImportState:
        state = self._states.get_import_state(import_state_id)
        if state is None:
            raise ImportNotFoundError(import_state_id)
        return state

    def _invalid_state(
        self,
        import_state_id: int,
        operation: str,
        required: list[ImportStatus],
    ) -> AppError:
        current = self._states.get_import_state(import_state_id)
        if current is None:
            return ImportNotFoundError(import_state_id)
        log.warning(
            "Invalid import operation",
            import_state_id=import_state_id,
            operation=operation,
            status=current.status.value,
        )
        return InvalidImportStateError(
            import_state_id,
            operation,
            current.status.value,
            [status.value for status in required],
        )


def _advance(
    state: ImportState,
    offset: int,
    imported: int = 0,
    skipped: int = 0,
    screenshots: int = 0,
    failed: int = 0,
) -> ImportState:
    return replace(
        state,
        last_processed_offset=offset + 1,
        games_processed=state.games_processed + 1,
        games_imported=state.games_imported + imported,
        games_skipped=state.games_skipped + skipped,
        screenshots_downloaded=state.screenshots_downloaded + screenshots,
        failed_count=state.failed_count + failed,
    )


def _estimate_batches(state: ImportState, total_count: int) -> int:
    total = total_count if state.target_candidates is None else min(total_count, state.target_candidates)
    return math.ceil(total / state.batch_size)


def _target_reached(state: ImportState) -> bool:
    return state.target_candidates is not None and state.games_processed >= state.target_candidates


def _total_exhausted(state: ImportState) -> bool:
    return state.total_candidates_available is not None and state.games_processed >= state.total_candidates_available
