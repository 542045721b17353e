"""Timestamp helpers shared by every windowed computation.

All engine timestamps are timezone-aware UTC datetimes. Bucket arithmetic is
done on integer epoch milliseconds so bucket keys are exact and independent
of float rounding.
"""

from datetime import datetime, timedelta, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    return (ensure_utc(value) - EPOCH) // _ONE_MS


def from_epoch_ms(ms: int) -> datetime:
    return EPOCH + timedelta(milliseconds=ms)


def floor_to_bucket(value: datetime, bucket: timedelta) -> datetime:
    """Left-align a timestamp to the start of its fixed-size bucket.

    bucket key = floor(ts_ms / bucket_ms) * bucket_ms

    Args:
        value:  Timestamp to align.
        bucket: Bucket width. Must be a positive whole number of milliseconds.

    Returns:
        The UTC start of the bucket containing value.

    Raises:
        ValueError: If bucket is shorter than one millisecond.
    """
    bucket_ms = bucket // _ONE_MS
    if bucket_ms <= 0:
        raise ValueError("bucket must be at least 1 millisecond.")
    return from_epoch_ms((to_epoch_ms(value) // bucket_ms) * bucket_ms)


def isoformat_z(value: datetime) -> str:
    """Render a UTC timestamp the way the store and API expect (trailing Z)."""
    return ensure_utc(value).isoformat().replace("+00:00", "Z")
