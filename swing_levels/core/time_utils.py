"""Time helpers for consistent UTC timestamps and period alignment."""

from datetime import datetime, timezone

_MS_PER_MINUTE = 60_000
_MS_PER_DAY = 86_400_000


def utc_now() -> datetime:
    """Return current UTC datetime with timezone attached."""

    return datetime.now(timezone.utc)


def period_begin_ms(time_ms: int, period_minutes: int) -> int:
    """Return the start of the epoch-aligned period containing ``time_ms``.

    Seconds and milliseconds are truncated first, so every period begins on a
    whole minute that is a multiple of ``period_minutes`` since the Unix epoch.
    """

    if period_minutes <= 0:
        raise ValueError("period_minutes must be positive")
    minute_ms = time_ms - (time_ms % _MS_PER_MINUTE)
    offset_minutes = (minute_ms // _MS_PER_MINUTE) % period_minutes
    return minute_ms - offset_minutes * _MS_PER_MINUTE


def session_day(time_ms: int, session_offset_minutes: int = 0) -> int:
    """Return the trading-session ordinal for ``time_ms`` given a UTC session roll offset."""

    return (time_ms - session_offset_minutes * _MS_PER_MINUTE) // _MS_PER_DAY
