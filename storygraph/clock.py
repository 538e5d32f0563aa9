from __future__ import annotations

from datetime import datetime, timezone
from pydantic import BaseModel, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RunClock(BaseModel, frozen=True):
    """Start time of one pipeline run."""

    started_at: datetime

    @field_validator('started_at')
    @classmethod
    def started_at_must_be_timezone_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None or value.utcoffset() is None:
            raise ValueError('RunClock value must be timezone-aware')
        return value

    @classmethod
    def start(cls, now: datetime | None = None) -> RunClock:
        return cls(started_at=now or utc_now())
