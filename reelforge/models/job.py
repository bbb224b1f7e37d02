"""
Job Model

Durable queue rows for batch work. Each row is one external record moving
through pending -> processing -> (completed | failed). Rows survive restarts,
so an interrupted run picks up where it stopped.

Usage:
    from reelforge.models.job import Job, JobStatus

    job = Job(id="rec123", data='{"id": "rec123"}', created_at=now, updated_at=now)
    if job.status == JobStatus.PENDING:
        ...
"""

from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, Column, Enum as SAEnum, Index, Text
from sqlmodel import Field, SQLModel


class JobStatus(str, Enum):
    """Status of a queued job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class Job(SQLModel, table=True):
    """
    One unit of batch work.

    Attributes:
        id: External record id (primary key, re-enqueue replaces the row)
        status: Current job status
        data: Serialized JSON payload, decoded by the handler
        error: Latest failure message (terminal message once failed)
        attempts: Number of failed executions so far
        created_at: Epoch milliseconds, orders the queue
        updated_at: Epoch milliseconds of the last transition
    """

    __tablename__ = "jobs"

    id: str = Field(primary_key=True)
    # Stored as the lowercase value ("pending"), not the member name
    status: JobStatus = Field(
        default=JobStatus.PENDING,
        sa_column=Column(
            SAEnum(JobStatus, values_callable=lambda statuses: [s.value for s in statuses], native_enum=False),
            nullable=False,
            index=True,
        ),
    )
    data: str = Field(sa_type=Text)
    error: Optional[str] = Field(default=None, sa_type=Text)
    attempts: int = Field(default=0)
    created_at: int = Field(sa_type=BigInteger)
    updated_at: int = Field(sa_type=BigInteger)

    __table_args__ = (
        # Dequeue: oldest pending first
        Index("ix_jobs_queue", "status", "created_at"),
        # Stale sweep and retention cleanup
        Index("ix_jobs_status_updated", "status", "updated_at"),
    )


__all__ = ["Job", "JobStatus", "TERMINAL_STATUSES"]
