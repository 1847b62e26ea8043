"""Job entity - background job with lifecycle status tracking."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from storyjobs.core.timezone import UTCDateTime, utcnow


class JobType(str, Enum):
    """Kinds of generation work a job can carry."""

    STORYBOOK = "storybook"
    AUTO_STORY = "auto-story"
    SCENES = "scenes"
    CARTOONIZE = "cartoonize"
    IMAGE_GENERATION = "image-generation"


class JobStatus(str, Enum):
    """Job lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job state transition."""

    pass


def _enum_column(enum_cls: type[Enum], **kwargs) -> Column:
    # Store enum values ("auto-story"), not member names ("AUTO_STORY")
    return Column(
        sa.Enum(
            enum_cls,
            values_callable=lambda members: [m.value for m in members],
            native_enum=False,
            length=32,
        ),
        **kwargs,
    )


class Job(SQLModel, table=True):
    """Job is one unit of background generation work tracked through its lifecycle."""

    __tablename__ = "background_jobs"  # type: ignore[assignment]
    __table_args__ = (sa.Index("ix_background_jobs_status_created_at", "status", "created_at"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    type: JobType = Field(sa_column=_enum_column(JobType, nullable=False, index=True))
    status: JobStatus = Field(
        default=JobStatus.PENDING,
        sa_column=_enum_column(JobStatus, nullable=False, index=True),
    )
    progress: int = Field(default=0, ge=0, le=100)
    current_step: Optional[str] = Field(default=None)
    user_id: Optional[UUID] = Field(default=None, index=True)
    input_data: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    result_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    error_message: Optional[str] = Field(default=None)
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False, index=True)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False)
    )
    started_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime()))
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime()))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _ensure_not_terminal(self, action: str) -> None:
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot {action} from terminal state {JobStatus(self.status).value}."
            )

    def record_progress(self, progress: int, step: Optional[str] = None) -> None:
        """Store clamped progress; the first non-zero value starts processing.

        Args:
            progress: Requested progress, clamped to [0, 100]
            step: Human-readable description of the active sub-stage

        Raises:
            InvalidStateTransition: If the job is already terminal
        """
        self._ensure_not_terminal("update progress")
        now = utcnow()
        self.progress = max(0, min(100, progress))
        if step:
            self.current_step = step
        if progress > 0:
            self.status = JobStatus.PROCESSING
            if self.started_at is None:
                self.started_at = now
        self.updated_at = now

    def mark_completed(self, result_data: dict) -> None:
        """Transition to completed with progress 100.

        Raises:
            InvalidStateTransition: If the job is already terminal
        """
        self._ensure_not_terminal("mark completed")
        now = utcnow()
        self.status = JobStatus.COMPLETED
        self.progress = 100
        self.current_step = "Completed successfully"
        self.result_data = result_data
        self.completed_at = now
        self.updated_at = now

    def mark_failed(self, error_message: str, should_retry: bool = False) -> bool:
        """Record a failure and either requeue the job or fail it permanently.

        Every call consumes one unit of the retry budget. The job goes back to
        pending while ``retry_count <= max_retries``; the call that exceeds the
        budget (or any call with ``should_retry=False``) is terminal.

        Returns:
            True if the job was requeued for retry, False if it failed permanently

        Raises:
            InvalidStateTransition: If the job is already terminal
        """
        self._ensure_not_terminal("mark failed")
        now = utcnow()
        self.retry_count += 1
        self.error_message = error_message
        self.updated_at = now

        can_retry = should_retry and self.retry_count <= self.max_retries
        if can_retry:
            self.status = JobStatus.PENDING
            self.progress = 0
            self.current_step = f"Retrying ({self.retry_count}/{self.max_retries})"
        else:
            self.status = JobStatus.FAILED
            self.current_step = "Failed after retries"
            self.completed_at = now
        return can_retry

    def mark_cancelled(self) -> None:
        """Transition from any non-terminal state to cancelled.

        Raises:
            InvalidStateTransition: If the job is already terminal
        """
        self._ensure_not_terminal("cancel")
        now = utcnow()
        self.status = JobStatus.CANCELLED
        self.current_step = "Cancelled by user"
        self.completed_at = now
        self.updated_at = now
