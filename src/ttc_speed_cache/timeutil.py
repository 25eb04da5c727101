import time
from datetime import datetime, timedelta, timezone

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def utc_from_ms(timestamp_ms: int) -> datetime:
    # Integer arithmetic; fromtimestamp() on a float can round across a day boundary.
    return _EPOCH + timedelta(milliseconds=timestamp_ms)


def iso_from_ms(timestamp_ms: int) -> str:
    """ISO 8601 with millisecond precision and a ``Z`` suffix."""
    return utc_from_ms(timestamp_ms).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )
