"""Command-line entry point for the catalog importer.

This module provides:
- Command-line argument parsing
- Application initialization and dependency injection
- Foreground import runs that pause cleanly on SIGINT/SIGTERM
"""

import argparse
import asyncio
import signal
import sys
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from catalog_ingest import __version__
from catalog_ingest.models import AppConfig, ImportConfig, ImportState
from catalog_ingest.services.asset_downloader import AssetDownloader
from catalog_ingest.services.catalog_client import CatalogClient
from catalog_ingest.services.catalog_repository import CatalogRepository
from catalog_ingest.services.config import ConfigurationService
from catalog_ingest.services.database import create_database_engine, create_session_factory, init_database
from catalog_ingest.services.errors import (
    AppError,
    ConfigurationError,
    ImportFailedError,
    ImportInProgressError,
    ImportNotFoundError,
    InvalidImportStateError,
    ValidationError,
    get_error_service,
)
from catalog_ingest.services.import_orchestrator import ImportOrchestrator
from catalog_ingest.services.import_state_repository import ImportStateRepository
from catalog_ingest.services.logging import setup_logging
from catalog_ingest.services.progress import LoggingProgressReporter
from catalog_ingest.services.rate_limiter import RateLimiter

log = structlog.stdlib.get_logger()

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INVALID_OPERATION = 2
EXIT_INTERRUPTED = 130

INVALID_OPERATION_ERRORS = (
    ImportInProgressError,
    ImportNotFoundError,
    InvalidImportStateError,
    ValidationError,
)


class ApplicationContext:
    """Container for application services and state.

    Services are built on first use, so commands that only read job state
    never open an HTTP client.
    """

    def __init__(self, config_path: Path | None = None) -> None:
        self._config_path: Path | None = config_path

        self._config_service: ConfigurationService | None = None
        self._config: AppConfig | None = None
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None
        self._state_repository: ImportStateRepository | None = None
        self._catalog_repository: CatalogRepository | None = None
        self._catalog_client: CatalogClient | None = None
        self._downloader: AssetDownloader | None = None
        self._orchestrator: ImportOrchestrator | None = None

        self._shutdown_event: asyncio.Event | None = None

    @property
    def config_service(self) -> ConfigurationService:
        if self._config_service is None:
            self._config_service = ConfigurationService(config_path=self._config_path)
        return self._config_service

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            self._config = self.config_service.load_config()
        return self._config

    @property
    def session_factory(self) -> sessionmaker:
        """Session factory bound to an initialized database."""
        if self._session_factory is None:
            self._engine = create_database_engine(self.config.database_url)
            init_database(self._engine)
            self._session_factory = create_session_factory(self._engine)
        return self._session_factory

    @property
    def state_repository(self) -> ImportStateRepository:
        if self._state_repository is None:
            self._state_repository = ImportStateRepository(self.session_factory)
        return self._state_repository

    @property
    def catalog_repository(self) -> CatalogRepository:
        if self._catalog_repository is None:
            self._catalog_repository = CatalogRepository(self.session_factory)
        return self._catalog_repository

    @property
    def catalog_client(self) -> CatalogClient:
        if self._catalog_client is None:
            config = self.config
            self._catalog_client = CatalogClient(
                api_key=config.api_key,
                rate_limiter=RateLimiter(
                    max_requests_per_window=config.max_requests_per_window,
                    window_seconds=config.window_seconds,
                    min_delay_seconds=config.min_request_delay,
                ),
                base_url=config.api_base_url,
                timeout=config.request_timeout,
                throttle_cooldown=config.throttle_cooldown,
            )
        return self._catalog_client

    @property
    def downloader(self) -> AssetDownloader:
        if self._downloader is None:
            self._downloader = AssetDownloader(
                max_attempts=self.config.download_attempts,
                base_delay=self.config.download_base_delay,
            )
        return self._downloader

    @property
    def orchestrator(self) -> ImportOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = ImportOrchestrator(
                catalog_client=self.catalog_client,
                downloader=self.downloader,
                state_repository=self.state_repository,
                catalog_repository=self.catalog_repository,
                reporter=LoggingProgressReporter(),
                assets_directory=self.config.assets_directory,
                public_asset_prefix=self.config.public_asset_prefix,
            )
        return self._orchestrator

    @property
    def shutdown_event(self) -> asyncio.Event:
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()
        return self._shutdown_event

    def request_shutdown(self) -> None:
        """Request that the foreground import pauses at its next checkpoint."""
        log.info("Shutdown requested, pausing at next checkpoint")
        self.shutdown_event.set()

    async def cleanup(self) -> None:
        """Close HTTP clients and database connections."""
        if self._catalog_client is not None:
            await self._catalog_client.close()
        if self._downloader is not None:
            await self._downloader.close()
        if self._engine is not None:
            self._engine.dispose()
        log.debug("Application cleanup complete")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="catalog-ingest",
        description="Resumable import of game catalog entries and screenshots",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  catalog-ingest start --batch-size 20 --min-quality 80
  catalog-ingest status
  catalog-ingest pause 3
  catalog-ingest resume 3
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: ~/.config/catalog-ingest/config.json)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Set the logging level (default: from configuration)",
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Directory for rotating log files (default: console only)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    start = commands.add_parser("start", help="Start a new import and run it in the foreground")
    start.add_argument("--batch-size", type=int, help="Candidates per page (1-40)")
    start.add_argument("--screenshots-per-game", type=int, help="Screenshots to download per game (1-10)")
    start.add_argument("--min-quality", type=int, help="Minimum quality score (0-100)")
    start.add_argument("--target", type=int, help="Stop after this many candidates")

    for name, help_text in (
        ("resume", "Resume a paused import in the foreground"),
        ("recover", "Continue an import left running by a crashed process"),
        ("pause", "Pause a running import at its next checkpoint"),
        ("cancel", "Cancel a running or paused import"),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("import_id", type=int)

    status = commands.add_parser("status", help="Show an import, or the active one")
    status.add_argument("import_id", type=int, nargs="?")

    listing = commands.add_parser("list", help="List recent imports")
    listing.add_argument("--limit", type=int, default=20)

    return parser


def format_state(state: ImportState) -> str:
    """Render a job as a short multi-line summary."""
    total = state.total_candidates_available if state.total_candidates_available is not None else "?"
    batches = state.total_batches_estimated if state.total_batches_estimated is not None else "?"
    lines = [
        f"Import {state.id}: {state.status.value} ({state.progress_percent:.1f}%)",
        f"  processed {state.games_processed}/{total}, imported {state.games_imported}, "
        f"skipped {state.games_skipped}",
        f"  screenshots {state.screenshots_downloaded}, failed downloads {state.failed_count}",
        f"  batch {state.current_batch}/{batches}, next page {state.current_page}, "
        f"offset {state.last_processed_offset}",
    ]
    if state.error_message:
        lines.append(f"  error: {state.error_message}")
    return "\n".join(lines)


def _import_config(args: argparse.Namespace, defaults: ImportConfig) -> ImportConfig:
    overrides = {
        "batch_size": args.batch_size,
        "screenshots_per_game": args.screenshots_per_game,
        "min_quality_threshold": args.min_quality,
        "target_candidates": args.target,
    }
    return replace(defaults, **{k: v for k, v in overrides.items() if v is not None})


def setup_signal_handlers(context: ApplicationContext) -> None:
    """Route SIGINT/SIGTERM to a pause request instead of killing the loop."""
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, context.request_shutdown)
        except (NotImplementedError, RuntimeError):
            # Platforms without loop signal support fall back to KeyboardInterrupt
            log.debug("Signal handler not supported", signal=signum.name)


async def run_foreground(context: ApplicationContext, import_id: int) -> int:
    """Wait for the import loop, pausing it when a shutdown is requested."""
    orchestrator = context.orchestrator
    waiter = asyncio.ensure_future(orchestrator.wait_for_import(import_id))
    shutdown = asyncio.ensure_future(context.shutdown_event.wait())

    try:
        done, _ = await asyncio.wait({waiter, shutdown}, return_when=asyncio.FIRST_COMPLETED)
        if shutdown in done and not waiter.done():
            try:
                await orchestrator.pause_import(import_id)
            except InvalidImportStateError as e:
                log.info("Import not paused", reason=e.message)
            state = await waiter
            print(format_state(state))
            return EXIT_INTERRUPTED

        state = await waiter
        print(format_state(state))
        return EXIT_OK
    finally:
        shutdown.cancel()


async def run_command(context: ApplicationContext, args: argparse.Namespace) -> int:
    orchestrator_commands = {"start", "resume", "recover"}
    if args.command in orchestrator_commands:
        ConfigurationService.require_api_key(context.config)
        setup_signal_handlers(context)

    if args.command == "start":
        state = await context.orchestrator.start_import(_import_config(args, context.config.default_import))
        print(f"Started import {state.id}")
        return await run_foreground(context, state.id)

    if args.command == "resume":
        state = await context.orchestrator.resume_import(args.import_id)
        print(f"Resumed import {state.id} at page {state.current_page}")
        return await run_foreground(context, state.id)

    if args.command == "recover":
        state = await context.orchestrator.recover_import(args.import_id)
        print(f"Recovering import {state.id} at page {state.current_page}")
        return await run_foreground(context, state.id)

    if args.command == "pause":
        print(format_state(await context.orchestrator.pause_import(args.import_id)))
        return EXIT_OK

    if args.command == "cancel":
        print(format_state(await context.orchestrator.cancel_import(args.import_id)))
        return EXIT_OK

    if args.command == "status":
        repository = context.state_repository
        if args.import_id is None:
            state = repository.get_active_import_state()
            if state is None:
                print("No active import")
                return EXIT_OK
        else:
            state = repository.get_import_state(args.import_id)
            if state is None:
                raise ImportNotFoundError(args.import_id)
        print(format_state(state))
        return EXIT_OK

    if args.command == "list":
        states = context.state_repository.list_import_states(limit=args.limit)
        if not states:
            print("No imports yet")
        for state in states:
            print(format_state(state))
        return EXIT_OK

    raise ConfigurationError(f"Unknown command: {args.command}")


async def run(context: ApplicationContext, args: argparse.Namespace) -> int:
    """Run one command and translate errors into exit codes."""
    try:
        return await run_command(context, args)

    except INVALID_OPERATION_ERRORS as e:
        friendly = get_error_service().handle_error(e, operation=args.command, component="cli")
        print(get_error_service().create_user_message(friendly, include_suggestions=False), file=sys.stderr)
        return EXIT_INVALID_OPERATION

    except ImportFailedError as e:
        print(e.message, file=sys.stderr)
        return EXIT_ERROR

    except AppError as e:
        friendly = get_error_service().handle_error(e, operation=args.command, component="cli")
        print(get_error_service().create_user_message(friendly), file=sys.stderr)
        return EXIT_ERROR

    finally:
        await context.cleanup()


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the application."""
    args = build_parser().parse_args(argv)

    setup_logging(log_level=args.log_level or "INFO", log_dir=args.log_dir)
    context = ApplicationContext(config_path=args.config)
    if args.log_level is None and context.config.log_level != "INFO":
        setup_logging(log_level=context.config.log_level, log_dir=args.log_dir)

    log.debug("Starting catalog-ingest", version=__version__, command=args.command)

    try:
        exit_code = asyncio.run(run(context, args))

    except KeyboardInterrupt:
        log.info("Interrupted by user")
        exit_code = EXIT_INTERRUPTED

    except Exception as e:
        log.error("Unhandled exception", error=str(e), exc_info=True)
        print(f"Fatal error: {e}", file=sys.stderr)
        exit_code = EXIT_ERROR

    log.debug("Exiting", exit_code=exit_code)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
