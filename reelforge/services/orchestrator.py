"""
Batch Orchestrator

Drives one run end to end:

    reset stale jobs -> load run config -> load work items -> enqueue
    -> drain rounds through the concurrency limiter -> report stats

Draining happens in rounds. A round dequeues every pending job, hands each one
to the limiter as its own task and waits for all of them. dequeue() is a
synchronous store call, so the whole dequeue pass finishes before any job of the
round starts. A job that fails and is requeued therefore always waits for the
next round, never sneaks into the current one.

Another round starts only when the previous one requeued at least one job and
skipped none. Jobs skipped because the circuit breaker is open (or a shutdown
was requested) stay pending for the next run instead of spinning here.

Usage:
    orchestrator = BatchOrchestrator(
        queue=JobQueue(engine),
        limiter=ConcurrencyLimiter(2),
        breaker=CircuitBreaker(failure_threshold=5, cooldown_seconds=60),
        config_provider=run_config_provider,
        work_source=airtable,
        sink=airtable,
        handler_factory=lambda run_config: GenerationHandler(run_config, airtable, token, client),
    )
    stats = await orchestrator.run()
"""

import asyncio
from dataclasses import dataclass, field
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from reelforge.core.circuit_breaker import CircuitBreaker
from reelforge.core.concurrency import ConcurrencyLimiter
from reelforge.core.context import job_context
from reelforge.core.errors import ErrorHandler, capture_exception
from reelforge.core.logging_config import get_logger
from reelforge.models.job import JobStatus
from reelforge.services.job_queue import JobQueue, JobSnapshot

logger = get_logger(__name__)

ERROR_MESSAGE_LIMIT = 500


class WorkItemLike(Protocol):
    id: str
    fields: Dict[str, Any]


class RunConfigProvider(Protocol):
    async def load(self) -> Any: ...


class WorkItemSource(Protocol):
    async def load_work_items(self) -> Sequence[WorkItemLike]: ...


class RecordSink(Protocol):
    async def update_record(self, table: str, record_id: str, fields: Dict[str, Any]) -> Any: ...


JobHandler = Callable[[JobSnapshot], Awaitable[None]]
HandlerFactory = Callable[[Any], JobHandler]


@dataclass
class RunStats:
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    skipped: int = 0
    rounds: int = 0
    started_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None

    @property
    def elapsed_seconds(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "retried": self.retried,
            "skipped": self.skipped,
            "rounds": self.rounds,
            "elapsed_seconds": round(self.elapsed_seconds, 1),
        }


@dataclass
class _RoundOutcome:
    requeued: int = 0
    skipped: int = 0


class BatchOrchestrator:
    def __init__(
        self,
        queue: JobQueue,
        limiter: ConcurrencyLimiter,
        breaker: CircuitBreaker,
        config_provider: RunConfigProvider,
        work_source: WorkItemSource,
        sink: RecordSink,
        handler_factory: HandlerFactory,
        max_retries: int = 3,
        retry_backoff: Sequence[float] = (1.0, 2.0, 4.0),
        stale_timeout_minutes: int = 30,
        table: str = "Generation",
    ):
        self.queue = queue
        self.limiter = limiter
        self.breaker = breaker
        self.config_provider = config_provider
        self.work_source = work_source
        self.sink = sink
        self.handler_factory = handler_factory
        self.max_retries = max_retries
        self.retry_backoff: List[float] = list(retry_backoff)
        self.stale_timeout_minutes = stale_timeout_minutes
        self.table = table
        self.stats = RunStats()
        self._shutdown_requested = False

    def request_shutdown(self) -> None:
        """Stop starting jobs. Jobs already running finish; queued ones go back to pending."""
        if not self._shutdown_requested:
            logger.warning("Shutdown requested, no new jobs will start")
        self._shutdown_requested = True

    async def run(self) -> RunStats:
        """
        Run one batch.

        Raises:
            Whatever the config provider or work source raise; both are fatal
            and happen before any job is dispatched.
        """
        self.stats = RunStats()
        logger.info("Processor starting")

        reset = self.queue.reset_stale(self.stale_timeout_minutes)
        if reset:
            logger.warning("Requeued jobs left in processing by an earlier run", count=reset)

        run_config = await self.config_provider.load()
        handler = self.handler_factory(run_config)

        items = await self.work_source.load_work_items()
        if not items:
            logger.info("No records to process")
            self.stats.finished_at = time.monotonic()
            return self.stats

        self.stats.total = self.queue.enqueue_many((item.id, {"id": item.id, "fields": item.fields}) for item in items)
        logger.info("Processing started", total=self.stats.total)

        while True:
            outcome = await self._drain_round(handler)
            if self._shutdown_requested or outcome.skipped or not outcome.requeued:
                break

            delay = self._backoff_for(self.stats.rounds)
            logger.info("Retrying failed jobs", requeued=outcome.requeued, round=self.stats.rounds + 1, delay=delay)
            if delay > 0:
                await asyncio.sleep(delay)

        self.stats.finished_at = time.monotonic()
        logger.info("Processing complete", **self.stats.as_dict(), queue=self.queue.stats())
        return self.stats

    def _backoff_for(self, completed_rounds: int) -> float:
        if not self.retry_backoff:
            return 0.0
        return self.retry_backoff[min(completed_rounds - 1, len(self.retry_backoff) - 1)]

    async def _drain_round(self, handler: JobHandler) -> _RoundOutcome:
        self.stats.rounds += 1
        outcome = _RoundOutcome()
        tasks: List[asyncio.Task] = []

        while True:
            job = self.queue.dequeue()
            if job is None:
                break
            tasks.append(asyncio.create_task(self.limiter.run(self._job_runner(job, handler, outcome))))

        if tasks:
            await asyncio.gather(*tasks)
        return outcome

    def _job_runner(self, job: JobSnapshot, handler: JobHandler, outcome: _RoundOutcome):
        async def run_job() -> None:
            await self._execute(job, handler, outcome)

        return run_job

    async def _execute(self, job: JobSnapshot, handler: JobHandler, outcome: _RoundOutcome) -> None:
        """Run one job. Never raises for a job failure; the batch carries on."""
        with job_context(job.id):
            if self._shutdown_requested or not self.breaker.can_proceed():
                reason = "shutdown" if self._shutdown_requested else "circuit breaker open"
                logger.warning("Skipping job", reason=reason)
                self.queue.release(job.id)
                outcome.skipped += 1
                self.stats.skipped += 1
                return

            logger.info("Processing job", attempt=job.attempts + 1)
            await self._update_record(job.id, {"Status": "Processing"})

            try:
                await handler(job)
            except Exception as e:
                message = str(e) or type(e).__name__
                capture_exception(e, context={"attempt": job.attempts + 1}, level="warning")
                self.breaker.record_failure()
                self.stats.failed += 1

                updated = self.queue.fail(job.id, message, self.max_retries)
                if updated is not None and updated.status == JobStatus.PENDING:
                    outcome.requeued += 1
                    self.stats.retried += 1

                await self._update_record(job.id, {"Error_Message": message[:ERROR_MESSAGE_LIMIT]})
                await self._update_record(job.id, {"Status": "Error"})
            else:
                self.breaker.record_success()
                self.stats.succeeded += 1
                self.queue.complete(job.id)
                await self._update_record(job.id, {"Status": "Complete"})
                logger.info("Job completed successfully")
            finally:
                self.stats.processed += 1

    async def _update_record(self, record_id: str, fields: Dict[str, Any]) -> None:
        """Best-effort write to the record sink; a failure here never changes the job outcome."""
        with ErrorHandler("update_record", context={"fields": list(fields)}, capture=False):
            await self.sink.update_record(self.table, record_id, fields)
