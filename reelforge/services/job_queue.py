"""
Job Queue Service

Durable job queue backed by the `jobs` table. Jobs survive process restarts:
anything not yet completed or failed is picked up again by the next run.

Usage:
    from reelforge.services.job_queue import JobQueue

    queue = JobQueue(engine)
    queue.enqueue("rec123", {"id": "rec123", "fields": {...}})

    job = queue.dequeue()
    if job:
        try:
            # Do the work...
            queue.complete(job.id)
        except Exception as e:
            queue.fail(job.id, str(e), max_retries=3)

    # On startup, requeue rows left in processing by a crashed run
    queue.reset_stale(timeout_minutes=30)

Every operation is a short synchronous transaction. Under asyncio they never
yield to the event loop, so each one is atomic with respect to other tasks.
"""

from dataclasses import dataclass
import json
import logging
from typing import Any, Dict, Iterable, Optional, Tuple

from sqlalchemy import Engine, delete, func, update
from sqlmodel import Session, select

from reelforge.core.typing import col, utc_now_ms
from reelforge.models.job import Job, JobStatus, TERMINAL_STATUSES

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000
DAY_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class JobSnapshot:
    """What a worker gets back from dequeue()."""

    id: str
    payload: Any
    attempts: int


def _truncate(error: str) -> str:
    return error[:MAX_ERROR_LENGTH] if len(error) > MAX_ERROR_LENGTH else error


class JobQueue:
    def __init__(self, engine: Engine):
        self.engine = engine

    def enqueue(self, job_id: str, payload: Any) -> Job:
        """
        Insert or replace the job row for job_id.

        Re-enqueueing an existing id resets it to pending with attempts=0; the
        last writer wins.
        """
        with Session(self.engine) as session:
            job = self._upsert(session, job_id, payload)
            session.commit()
            session.refresh(job)

        logger.debug(f"Enqueued job id={job_id}")
        return job

    def enqueue_many(self, items: Iterable[Tuple[str, Any]]) -> int:
        """Enqueue every (job_id, payload) pair in one transaction."""
        count = 0
        with Session(self.engine) as session:
            for job_id, payload in items:
                self._upsert(session, job_id, payload)
                count += 1
            session.commit()

        logger.info(f"Enqueued {count} jobs")
        return count

    def _upsert(self, session: Session, job_id: str, payload: Any) -> Job:
        if not job_id:
            raise ValueError("Job id cannot be empty.")

        now = utc_now_ms()
        data = json.dumps(payload)
        job = session.get(Job, job_id)
        if job is None:
            job = Job(id=job_id, data=data, created_at=now, updated_at=now)
        else:
            job.status = JobStatus.PENDING
            job.data = data
            job.error = None
            job.attempts = 0
            job.created_at = now
            job.updated_at = now
        session.add(job)
        # Flush so a duplicate id later in the same batch finds this row
        session.flush()
        return job

    def dequeue(self) -> Optional[JobSnapshot]:
        """
        Claim the oldest pending job.

        The transition to processing is guarded on status, so a row can never be
        handed out twice even if another caller selected it first.

        Returns:
            A snapshot of the claimed job, or None when nothing is pending
        """
        with Session(self.engine) as session:
            while True:
                stmt = (
                    select(Job)
                    .where(col(Job.status) == JobStatus.PENDING)
                    .order_by(col(Job.created_at).asc())
                    .limit(1)
                )
                job = session.exec(stmt).first()
                if job is None:
                    return None
                snapshot = JobSnapshot(id=job.id, payload=json.loads(job.data), attempts=job.attempts)

                claimed = session.execute(
                    update(Job)
                    .where(col(Job.id) == snapshot.id, col(Job.status) == JobStatus.PENDING)
                    .values(status=JobStatus.PROCESSING, updated_at=utc_now_ms())
                    .execution_options(synchronize_session=False)
                )
                session.commit()

                if claimed.rowcount == 1:
                    logger.debug(f"Dequeued job id={snapshot.id}, attempts={snapshot.attempts}")
                    return snapshot

                # Lost the race for this row; expire and look again
                session.expire_all()

    def complete(self, job_id: str) -> Optional[Job]:
        """Mark a job as successfully completed."""
        with Session(self.engine) as session:
            job = session.get(Job, job_id)
            if job is None:
                logger.warning(f"Job id={job_id} not found for completion")
                return None

            job.status = JobStatus.COMPLETED
            job.error = None
            job.updated_at = utc_now_ms()
            session.add(job)
            session.commit()
            session.refresh(job)

        logger.debug(f"Completed job id={job_id}")
        return job

    def fail(self, job_id: str, error: str, max_retries: int = 3) -> Optional[Job]:
        """
        Record a failed attempt.

        attempts is incremented; once it reaches max_retries the job becomes
        permanently FAILED, otherwise it goes back to PENDING and is immediately
        eligible for dequeue again.

        Returns:
            The updated Job, or None if not found
        """
        with Session(self.engine) as session:
            job = session.get(Job, job_id)
            if job is None:
                logger.warning(f"Job id={job_id} not found for failure")
                return None

            job.attempts += 1
            job.error = _truncate(error)
            job.updated_at = utc_now_ms()

            if job.attempts >= max_retries:
                job.status = JobStatus.FAILED
                logger.warning(f"Job id={job_id} permanently failed after {job.attempts} attempts: {error[:100]}")
            else:
                job.status = JobStatus.PENDING
                logger.info(f"Job id={job_id} failed (attempt {job.attempts}/{max_retries}), will retry: {error[:100]}")

            session.add(job)
            session.commit()
            session.refresh(job)

        return job

    def release(self, job_id: str) -> bool:
        """
        Hand a claimed job back to the queue without counting an attempt.

        Used when a dequeued job is never started (breaker open, shutdown).

        Returns:
            True if the job was processing and is now pending
        """
        with Session(self.engine) as session:
            result = session.execute(
                update(Job)
                .where(col(Job.id) == job_id, col(Job.status) == JobStatus.PROCESSING)
                .values(status=JobStatus.PENDING, updated_at=utc_now_ms())
                .execution_options(synchronize_session=False)
            )
            session.commit()

        released = result.rowcount == 1
        if released:
            logger.debug(f"Released job id={job_id} back to pending")
        return released

    def reset_stale(self, timeout_minutes: int = 30) -> int:
        """
        Requeue jobs stuck in processing.

        A run that is killed between dequeue and complete/fail leaves its jobs
        in processing forever. Rows untouched for longer than timeout_minutes
        go back to pending; attempts is left alone because the outcome of the
        interrupted attempt is unknown.

        Returns:
            Number of jobs reset
        """
        cutoff = utc_now_ms() - timeout_minutes * 60 * 1000

        with Session(self.engine) as session:
            stmt = select(Job).where(
                col(Job.status) == JobStatus.PROCESSING,
                col(Job.updated_at) < cutoff,
            )
            stale_jobs = list(session.exec(stmt).all())

            for job in stale_jobs:
                job.status = JobStatus.PENDING
                job.updated_at = utc_now_ms()
                job.error = f"Job timed out after {timeout_minutes} minutes in processing"
                session.add(job)

            if stale_jobs:
                session.commit()
                logger.warning(f"Reset {len(stale_jobs)} stale jobs to pending")

        return len(stale_jobs)

    def get(self, job_id: str) -> Optional[Job]:
        with Session(self.engine) as session:
            return session.get(Job, job_id)

    def stats(self) -> Dict[str, int]:
        """
        Get job counts per status.

        Returns:
            Dict with counts per status: {"pending": N, "processing": N, ...}
        """
        stats: Dict[str, int] = {status.value: 0 for status in JobStatus}

        with Session(self.engine) as session:
            stmt = select(Job.status, func.count()).group_by(Job.status)
            for status, count in session.exec(stmt).all():
                stats[JobStatus(status).value] = count

        return stats

    def cleanup(self, retention_days: int = 7) -> int:
        """
        Delete completed and failed jobs older than retention_days.

        Returns:
            Number of jobs deleted
        """
        cutoff = utc_now_ms() - retention_days * DAY_MS

        with Session(self.engine) as session:
            result = session.execute(
                delete(Job).where(
                    col(Job.status).in_(TERMINAL_STATUSES),
                    col(Job.updated_at) < cutoff,
                )
            )
            session.commit()

        deleted = result.rowcount or 0
        logger.info(f"Cleaned up {deleted} finished jobs older than {retention_days} days")
        return deleted


__all__ = ["JobQueue", "JobSnapshot"]
