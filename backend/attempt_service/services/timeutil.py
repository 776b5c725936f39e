"""Time values at the system boundary.

Everything inside the attempt engine works on integer epoch milliseconds
observed by the server. Incoming values (test windows, imported records)
may arrive in several shapes, so they are normalised exactly once, at
ingestion, by :func:`to_epoch_ms`:

- ``datetime``             → naive values are taken as UTC
- ``int`` / ``float``      → epoch milliseconds; values below ``1e11`` are
                             treated as epoch seconds
- ``str``                  → all-digit strings as numbers, otherwise ISO‑8601
                             (a trailing ``Z`` is accepted)
- ``{"seconds": .., "nanoseconds": ..}`` → exported Firestore timestamps
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Union

# Accepted wherever a boundary time comes in; normalised to epoch milliseconds.
TimeValue = Union[datetime, int, float, str, dict[str, Any]]

# Anything smaller is almost certainly seconds (1e11 ms ≈ March 1973).
_SECONDS_CUTOFF = 100_000_000_000


def now_ms() -> int:
    """Current server time in epoch milliseconds."""
    return int(time.time() * 1000)


def to_epoch_ms(value: TimeValue) -> int:
    """Normalise a boundary time value to integer epoch milliseconds."""
    if isinstance(value, bool):
        raise TypeError("Boolean is not a time value")

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)

    if isinstance(value, (int, float)):
        if abs(value) < _SECONDS_CUTOFF:
            return int(value * 1000)
        return int(value)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("Empty time value")
        if text.lstrip("-").isdigit():
            return to_epoch_ms(int(text))
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_epoch_ms(datetime.fromisoformat(text))

    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            raise ValueError(f"Unrecognised timestamp mapping: {sorted(value)}")
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
        return int(seconds) * 1000 + int(nanos) // 1_000_000

    raise TypeError(f"Unsupported time value: {type(value).__name__}")


def from_epoch_ms(ms: int) -> datetime:
    """Epoch milliseconds → aware UTC datetime (for Celery ETAs and display)."""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def minutes_to_ms(minutes: int | float) -> int:
    return int(minutes * 60_000)
