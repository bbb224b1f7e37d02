"""
reelforge command line.

Usage:
    reelforge                       # same as `reelforge run`
    reelforge run                   # process every pending Generation row
    reelforge stats                 # job queue counts and key rotation state
    reelforge cleanup --days 7      # drop finished jobs older than N days
    reelforge reset-stale --minutes 30
    reelforge reset-rotation --provider fal:image

Ctrl+C (or SIGTERM) during `run` stops new jobs from starting; jobs already
running finish and everything else stays pending for the next run.
"""

import argparse
import asyncio
import json
import signal
import sys
from typing import List, Optional

import httpx
from pydantic import ValidationError

from reelforge.core.circuit_breaker import CircuitBreaker
from reelforge.core.concurrency import ConcurrencyLimiter
from reelforge.core.config import Settings
from reelforge.core.context import clear_context, generate_run_id, set_run_id
from reelforge.core.errors import capture_exception, init_sentry
from reelforge.core.exceptions import ConfigurationError
from reelforge.core.logging_config import configure_logging, get_logger
from reelforge.db import create_db_and_tables, make_engine
from reelforge.services.airtable import AirtableClient
from reelforge.services.api_rotation import ApiRotationManager
from reelforge.services.generation import GenerationHandler
from reelforge.services.job_queue import JobQueue
from reelforge.services.orchestrator import BatchOrchestrator, RunStats
from reelforge.services.run_config import AirtableRunConfigProvider

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="reelforge", description="Batch video generation from Airtable rows")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Process all pending Generation rows (default)")
    subparsers.add_parser("stats", help="Show job queue counts and API key rotation state")

    cleanup = subparsers.add_parser("cleanup", help="Delete finished jobs older than the retention window")
    cleanup.add_argument("--days", type=int, default=None, help="Retention in days (default: JOB_RETENTION_DAYS)")

    reset_stale = subparsers.add_parser("reset-stale", help="Requeue jobs stuck in processing")
    reset_stale.add_argument(
        "--minutes", type=int, default=None, help="Staleness timeout (default: STALE_JOB_TIMEOUT_MINUTES)"
    )

    reset_rotation = subparsers.add_parser("reset-rotation", help="Reset API key rotation state")
    reset_rotation.add_argument(
        "--provider", type=str, default=None, help="Rotation row to reset, e.g. fal:image (default: all)"
    )

    return parser


def _install_signal_handlers(orchestrator: BatchOrchestrator) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, orchestrator.request_shutdown)
        except NotImplementedError:
            # Windows event loops
            signal.signal(sig, lambda signum, frame: orchestrator.request_shutdown())


async def run_batch(settings: Settings) -> RunStats:
    engine = make_engine(settings.DATABASE_URL)
    create_db_and_tables(engine)

    queue = JobQueue(engine)
    rotation = ApiRotationManager(engine)

    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
        airtable = AirtableClient(
            settings.AIRTABLE_TOKEN,
            settings.AIRTABLE_BASE_ID,
            client,
            table=settings.GENERATION_TABLE,
            api_url=settings.AIRTABLE_API_URL,
        )
        config_provider = AirtableRunConfigProvider(
            airtable,
            rotation,
            settings.credential_sets(),
            client,
            table=settings.CONFIGURATION_TABLE,
        )

        orchestrator = BatchOrchestrator(
            queue=queue,
            limiter=ConcurrencyLimiter(settings.CONCURRENCY),
            breaker=CircuitBreaker(
                failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
                cooldown_seconds=settings.CIRCUIT_COOLDOWN_SECONDS,
            ),
            config_provider=config_provider,
            work_source=airtable,
            sink=airtable,
            handler_factory=lambda run_config: GenerationHandler(
                run_config, airtable, settings.APIFY_TOKEN, client, table=settings.GENERATION_TABLE
            ),
            max_retries=settings.MAX_RETRIES,
            retry_backoff=settings.RETRY_BACKOFF_SECONDS,
            stale_timeout_minutes=settings.STALE_JOB_TIMEOUT_MINUTES,
            table=settings.GENERATION_TABLE,
        )
        _install_signal_handlers(orchestrator)

        stats = await orchestrator.run()

    removed = queue.cleanup(settings.JOB_RETENTION_DAYS)
    if removed:
        logger.info("Old jobs cleaned up", count=removed, retention_days=settings.JOB_RETENTION_DAYS)
    return stats


def _cmd_run(settings: Settings) -> int:
    problems = settings.validate_required()
    if problems:
        for problem in problems:
            logger.error("Configuration error", problem=problem)
        return 1

    set_run_id(generate_run_id())
    try:
        stats = asyncio.run(run_batch(settings))
    except ConfigurationError as e:
        logger.error("Configuration error", error=str(e))
        return 1
    except Exception as e:
        capture_exception(e, context={"operation": "run"})
        return 1
    finally:
        clear_context()

    print(
        f"Processed {stats.processed} jobs in {stats.elapsed_seconds:.1f}s: "
        f"{stats.succeeded} succeeded, {stats.failed} failed attempts, "
        f"{stats.retried} retried, {stats.skipped} skipped"
    )
    return 0


def _cmd_stats(settings: Settings) -> int:
    engine = make_engine(settings.DATABASE_URL)
    create_db_and_tables(engine)
    output = {
        "queue": JobQueue(engine).stats(),
        "rotation": ApiRotationManager(engine).get_stats(),
    }
    print(json.dumps(output, indent=2))
    return 0


def _cmd_cleanup(settings: Settings, days: Optional[int]) -> int:
    engine = make_engine(settings.DATABASE_URL)
    create_db_and_tables(engine)
    retention = days if days is not None else settings.JOB_RETENTION_DAYS
    removed = JobQueue(engine).cleanup(retention)
    print(f"Removed {removed} jobs older than {retention} days")
    return 0


def _cmd_reset_stale(settings: Settings, minutes: Optional[int]) -> int:
    engine = make_engine(settings.DATABASE_URL)
    create_db_and_tables(engine)
    timeout = minutes if minutes is not None else settings.STALE_JOB_TIMEOUT_MINUTES
    reset = JobQueue(engine).reset_stale(timeout)
    print(f"Requeued {reset} jobs stuck in processing for more than {timeout} minutes")
    return 0


def _cmd_reset_rotation(settings: Settings, provider: Optional[str]) -> int:
    engine = make_engine(settings.DATABASE_URL)
    create_db_and_tables(engine)
    rotation = ApiRotationManager(engine)
    if provider:
        rotation.reset(provider)
        print(f"Reset rotation state for {provider}")
    else:
        rotation.reset_all()
        print("Reset rotation state for all providers")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = Settings()
    except ValidationError as e:
        configure_logging()
        logger.error("Invalid settings", error=str(e))
        return 1

    configure_logging(json_logs=settings.LOG_JSON, level=settings.LOG_LEVEL)
    init_sentry(settings.SENTRY_DSN, environment=settings.ENVIRONMENT)

    command = args.command or "run"
    if command == "stats":
        return _cmd_stats(settings)
    if command == "cleanup":
        return _cmd_cleanup(settings, args.days)
    if command == "reset-stale":
        return _cmd_reset_stale(settings, args.minutes)
    if command == "reset-rotation":
        return _cmd_reset_rotation(settings, args.provider)
    return _cmd_run(settings)


if __name__ == "__main__":
    sys.exit(main())
