# src/taskflow/tasks/timestamps.py

"""
Normalization of provider-specific time values.

Stores hand back timestamps in whatever shape they keep internally. The core
only ever works with timezone-aware UTC datetimes, and with None for a
server timestamp that has not been finalized yet ("pending").
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from ..store.base import SERVER_TIMESTAMP


def utc_now() -> datetime:
    return datetime.now(UTC)


def _from_seconds(seconds: float, nanos: float = 0.0) -> datetime:
    try:
        return datetime.fromtimestamp(float(seconds) + float(nanos) / 1e9, tz=UTC)
    except (OverflowError, OSError) as e:
        raise ValueError(f"timestamp out of range: {seconds!r}") from e


def normalize_timestamp(raw: Any) -> datetime | None:
    """
    Convert a stored time value into an aware UTC datetime.

    Accepted shapes:
    - None / SERVER_TIMESTAMP      -> None (pending)
    - datetime (naive means UTC)
    - int / float epoch seconds
    - ISO-8601 string (a trailing "Z" is accepted)
    - {"seconds": .., "nanoseconds": ..} (also "_seconds"/"_nanoseconds")
    - any object with .seconds / .nanoseconds attributes

    Raises ValueError for anything else.
    """
    if raw is None or raw is SERVER_TIMESTAMP:
        return None

    if isinstance(raw, datetime):
        return raw.replace(tzinfo=UTC) if raw.tzinfo is None else raw.astimezone(UTC)

    # bool is an int subclass; a boolean is never a timestamp.
    if isinstance(raw, bool):
        raise ValueError(f"not a timestamp: {raw!r}")

    if isinstance(raw, (int, float)):
        return _from_seconds(raw)

    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            raise ValueError("empty timestamp string")
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        return parsed.replace(tzinfo=UTC) if parsed.tzinfo is None else parsed.astimezone(UTC)

    if isinstance(raw, Mapping):
        for sec_key, nano_key in (("seconds", "nanoseconds"), ("_seconds", "_nanoseconds")):
            if sec_key in raw:
                return _from_seconds(raw[sec_key], raw.get(nano_key) or 0)
        raise ValueError(f"mapping is not a timestamp: {dict(raw)!r}")

    seconds = getattr(raw, "seconds", None)
    if isinstance(seconds, (int, float)):
        return _from_seconds(seconds, getattr(raw, "nanoseconds", 0) or 0)

    raise ValueError(f"unsupported timestamp type: {type(raw).__name__}")


def to_wire(value: datetime) -> str:
    """Serialize an aware datetime the way the core writes it to the store."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()
