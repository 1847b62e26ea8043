"""ProcessingLock entity - Named, time-bounded lease held by one worker instance."""

from datetime import datetime

from pydantic import field_validator
from sqlalchemy import Column
from sqlmodel import Field, SQLModel

from storyjobs.core.timezone import UTCDateTime, utcnow


class ProcessingLock(SQLModel, table=True):
    """ProcessingLock keeps overlapping scheduled workers from draining the same queue."""

    __tablename__ = "processing_locks"  # type: ignore[assignment]

    name: str = Field(primary_key=True, max_length=100)
    owner: str = Field(max_length=255)
    acquired_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False)
    )
    expires_at: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False))

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate name is alphanumeric + underscores only."""
        if not v.replace("_", "").isalnum():
            raise ValueError("Lock name must be alphanumeric with underscores only")
        return v

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now
