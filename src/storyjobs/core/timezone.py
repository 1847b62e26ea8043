"""UTC timezone enforcement.

This module sets the TZ environment variable to UTC to ensure
consistent datetime behavior across all environments.
"""

import os
from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator

# Set UTC timezone for the entire application
os.environ["TZ"] = "UTC"


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive values as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """TIMESTAMP WITH TIME ZONE column that always round-trips aware UTC values.

    PostgreSQL keeps the offset; SQLite stores the UTC wall time and loses it,
    so loaded values are re-tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)
