from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional

__all__ = ["utc_now", "utc_iso", "to_naive_utc", "naive_utc_now"]


def utc_now() -> datetime:
    """Timezone-aware current UTC time (replaces datetime.utcnow)."""
    return datetime.now(timezone.utc)


def naive_utc_now() -> datetime:
    """Current UTC time without tzinfo, comparable with stored timestamps."""
    return to_naive_utc(utc_now())


def utc_iso(ts: Optional[datetime] = None) -> str:
    """Return an ISO-8601 string in UTC with millisecond precision and a trailing Z.

    Naive inputs are taken to already be UTC.
    """
    d = ts or utc_now()
    if d.tzinfo is not None:
        d = d.astimezone(timezone.utc).replace(tzinfo=None)
    return d.isoformat(timespec="milliseconds") + "Z"


def to_naive_utc(dt: datetime) -> datetime:
    """Convert any datetime to UTC and drop tzinfo (rule timestamps are stored naive UTC)."""
    if dt.tzinfo is None:
        # Assume naive input already represents UTC
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)
