"""
Timestamp normalization shared by the tracer, the store and the scorer.

Snapshots and requests may carry naive datetimes; they are taken to be UTC
so they can be compared with the aware ``now`` the engine uses.
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(ts: Optional[datetime]) -> datetime:
    """Naive timestamps are taken to be UTC. ``None`` means now."""
    if ts is None:
        return utcnow()
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)
