"""Persistence adapter for import job checkpoints."""

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from sqlalchemy import literal, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..models import (
    ACTIVE_STATUSES,
    FULL_IMPORT,
    TERMINAL_STATUSES,
    ImportConfig,
    ImportProgress,
    ImportState,
    ImportStatus,
)
from .database import ImportStateRow, utcnow
from .errors import ImportInProgressError, PersistenceError

log = structlog.stdlib.get_logger()

_ACTIVE_VALUES = [s.value for s in ACTIVE_STATUSES]
_TERMINAL_VALUES = [s.value for s in TERMINAL_STATUSES]

# Columns a caller may patch through update_import_state
_PATCHABLE = frozenset({
    "current_page",
    "last_processed_offset",
    "games_processed",
    "games_imported",
    "games_skipped",
    "screenshots_downloaded",
    "failed_count",
    "current_batch",
    "total_candidates_available",
    "total_batches_estimated",
    "cancel_requested",
    "error_message",
})


class ImportStateRepository:
    """Atomic single-row reads and writes of ImportState records."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Session]:
        try:
            with self._session_factory.begin() as session:
                yield session
        except SQLAlchemyError as e:
            log.error("Import state persistence failed", operation=operation, error=str(e))
            raise PersistenceError(
                f"Failed to {operation.replace('_', ' ')}",
                operation=operation,
                original_error=e,
            ) from e

    def create_import_state(self, config: ImportConfig) -> ImportState:
        """Insert a pending job unless another job is active.

        The existence check and the insert are one statement, so two
        processes racing to start an import cannot both succeed.

        Raises:
            ImportInProgressError: If a pending, running or paused job exists
        """
        now = utcnow()
        values: dict[str, Any] = {
            "import_type": FULL_IMPORT,
            "status": ImportStatus.PENDING.value,
            "batch_size": config.batch_size,
            "min_quality_threshold": config.min_quality_threshold,
            "screenshots_per_game": config.screenshots_per_game,
            "target_candidates": config.target_candidates,
            "current_page": 1,
            "last_processed_offset": 0,
            "games_processed": 0,
            "games_imported": 0,
            "games_skipped": 0,
            "screenshots_downloaded": 0,
            "failed_count": 0,
            "current_batch": 0,
            "cancel_requested": False,
            "created_at": now,
            "updated_at": now,
        }
        table = ImportStateRow.__table__
        active = select(ImportStateRow.id).where(ImportStateRow.status.in_(_ACTIVE_VALUES))
        source = select(
            *[literal(value, table.c[name].type).label(name) for name, value in values.items()]
        ).where(~active.exists())
        stmt = table.insert().from_select(list(values), source).returning(table.c.id)

        with self._transaction("create_import_state") as session:
            new_id = session.execute(stmt).scalar_one_or_none()
            if new_id is None:
                active_id = session.execute(active.limit(1)).scalar_one_or_none()
                log.warning("Import already active, not creating", active_import_state_id=active_id)
                raise ImportInProgressError(active_id)
            row = session.get(ImportStateRow, new_id)
            state = _to_state(row)

        log.info(
            "Import state created",
            import_state_id=state.id,
            batch_size=config.batch_size,
            min_quality_threshold=config.min_quality_threshold,
        )
        return state

    def get_import_state(self, import_state_id: int) -> ImportState | None:
        with self._transaction("get_import_state") as session:
            row = session.get(ImportStateRow, import_state_id)
            return _to_state(row) if row else None

    def get_active_import_state(self) -> ImportState | None:
        """The newest pending, running or paused job, if any."""
        stmt = (
            select(ImportStateRow)
            .where(ImportStateRow.status.in_(_ACTIVE_VALUES))
            .order_by(ImportStateRow.created_at.desc(), ImportStateRow.id.desc())
            .limit(1)
        )
        with self._transaction("get_active_import_state") as session:
            row = session.execute(stmt).scalar_one_or_none()
            return _to_state(row) if row else None

    def list_import_states(self, limit: int = 20, offset: int = 0) -> list[ImportState]:
        """Jobs newest first."""
        stmt = (
            select(ImportStateRow)
            .order_by(ImportStateRow.created_at.desc(), ImportStateRow.id.desc())
            .limit(limit)
            .offset(offset)
        )
        with self._transaction("list_import_states") as session:
            return [_to_state(row) for row in session.execute(stmt).scalars()]

    def update_import_state(
        self,
        import_state_id: int,
        patch: ImportProgress | dict[str, Any],
    ) -> ImportState | None:
        """Write all given fields of a non-terminal job in one UPDATE.

        Returns:
            The updated state, or None if the job is missing or terminal
        """
        values = patch.as_patch() if isinstance(patch, ImportProgress) else dict(patch)
        unknown = set(values) - _PATCHABLE
        if unknown:
            raise ValueError(f"Fields cannot be patched: {', '.join(sorted(unknown))}")

        stmt = (
            update(ImportStateRow)
            .where(
                ImportStateRow.id == import_state_id,
                ImportStateRow.status.not_in(_TERMINAL_VALUES),
            )
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        with self._transaction("update_import_state") as session:
            if session.execute(stmt).rowcount == 0:
                log.warning("Import state not updated", import_state_id=import_state_id)
                return None
            row = session.get(ImportStateRow, import_state_id)
            state = _to_state(row)

        log.debug("Import state updated", import_state_id=import_state_id, fields=sorted(values))
        return state

    def transition(
        self,
        import_state_id: int,
        allowed_from: Iterable[ImportStatus],
        to: ImportStatus,
        **fields: Any,
    ) -> ImportState | None:
        """Compare-and-set status change.

        Returns:
            The updated state, or None when the job is missing or its status
            is not in ``allowed_from``
        """
        from_values = [s.value for s in allowed_from if s not in TERMINAL_STATUSES]
        stmt = (
            update(ImportStateRow)
            .where(
                ImportStateRow.id == import_state_id,
                ImportStateRow.status.in_(from_values),
            )
            .values(status=to.value, updated_at=utcnow(), **fields)
            .execution_options(synchronize_session=False)
        )
        with self._transaction("transition_import_state") as session:
            if session.execute(stmt).rowcount == 0:
                return None
            row = session.get(ImportStateRow, import_state_id)
            state = _to_state(row)

        log.info("Import state transitioned", import_state_id=import_state_id, new_status=to.value)
        return state

    def delete_import_state(self, import_state_id: int) -> bool:
        """Delete a finished job. Active jobs are never deleted."""
        with self._transaction("delete_import_state") as session:
            row = session.get(ImportStateRow, import_state_id)
            if row is None or row.status not in _TERMINAL_VALUES:
                return False
            session.delete(row)

        log.warning("Import state deleted", import_state_id=import_state_id)
        return True


def _to_state(row: ImportStateRow) -> ImportState:
    return ImportState(
        id=row.id,
        import_type=row.import_type,
        status=ImportStatus(row.status),
        batch_size=row.batch_size,
        min_quality_threshold=row.min_quality_threshold,
        screenshots_per_game=row.screenshots_per_game,
        target_candidates=row.target_candidates,
        total_candidates_available=row.total_candidates_available,
        current_page=row.current_page,
        last_processed_offset=row.last_processed_offset,
        games_processed=row.games_processed,
        games_imported=row.games_imported,
        games_skipped=row.games_skipped,
        screenshots_downloaded=row.screenshots_downloaded,
        failed_count=row.failed_count,
        current_batch=row.current_batch,
        total_batches_estimated=row.total_batches_estimated,
        cancel_requested=bool(row.cancel_requested),
        error_message=row.error_message,
        started_at=row.started_at,
        paused_at=row.paused_at,
        resumed_at=row.resumed_at,
        completed_at=row.completed_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
