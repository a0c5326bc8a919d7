"""
TTL policy for cached match data.

Pure functions: no I/O, no clock reads unless ``now`` is omitted. Day comparisons
are UTC calendar days, not rolling 24h windows, so a match at 23:50 UTC and a
check at 00:10 UTC the next day are on different days.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

LIVE_STATUSES = frozenset({"1H", "2H", "LIVE", "ET", "P", "HT"})
FINISHED_STATUSES = frozenset({"FT", "AET", "PEN", "AWD", "WO"})

LIVE_TTL = timedelta(minutes=5)
FUTURE_TTL = timedelta(hours=2)
FINISHED_TODAY_TTL = timedelta(hours=24)
RECENT_PAST_TTL = timedelta(days=30)
HISTORICAL_TTL = timedelta(days=365)
FALLBACK_TTL = timedelta(hours=1)
LINEUPS_TTL = timedelta(days=30)

HISTORICAL_AGE_DAYS = 30


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_live(status: Optional[str]) -> bool:
    if not status:
        return False
    return status.upper() in LIVE_STATUSES


def is_finished(status: Optional[str]) -> bool:
    if not status:
        return False
    return status.upper() in FINISHED_STATUSES


def _is_past_utc_day(value: datetime, compared_to: datetime) -> bool:
    return value.date() < compared_to.date()


def fixture_ttl(match_date: datetime, status: Optional[str], now: Optional[datetime] = None) -> timedelta:
    """
    TTL for core fixture data. Rules are evaluated in order; first match wins.

    Args:
        match_date: Scheduled kickoff
        status: Provider short status code (e.g. "NS", "1H", "FT")
        now: Reference time (defaults to current UTC time)

    Returns:
        How long the cached record stays fresh
    """
    match_date = _as_utc(match_date)
    now = _as_utc(now) if now is not None else datetime.now(timezone.utc)

    if is_live(status):
        return LIVE_TTL

    if match_date > now:
        # Kickoff time/status may still change
        return FUTURE_TTL

    if is_finished(status) and match_date.date() == now.date():
        return FINISHED_TODAY_TTL

    if is_finished(status) or _is_past_utc_day(match_date, now):
        age = now - match_date
        if age > timedelta(days=HISTORICAL_AGE_DAYS):
            # Long-tail history does not change
            return HISTORICAL_TTL
        return RECENT_PAST_TTL

    # Past kickoff today but neither live nor finished
    return FALLBACK_TTL


def details_ttl(status: Optional[str]) -> timedelta:
    """TTL for per-match statistics and events."""
    if is_live(status):
        return LIVE_TTL
    if is_finished(status):
        return FINISHED_TODAY_TTL
    return FALLBACK_TTL


def lineups_ttl(*_args, **_kwargs) -> timedelta:
    """Lineups do not change once published."""
    return LINEUPS_TTL


def list_ttl(matches: Iterable, now: Optional[datetime] = None) -> timedelta:
    """
    TTL for a cached fixture list: the shortest TTL among its records.

    A list holding a live match expires with that match; an empty list
    gets the fallback TTL so empty dates are re-checked hourly.
    """
    ttls = [fixture_ttl(m.kickoff, m.status, now) for m in matches]
    if not ttls:
        return FALLBACK_TTL
    return min(ttls)


def to_ms(ttl: timedelta) -> int:
    return int(ttl.total_seconds() * 1000)


def fixture_ttl_ms(match_date: datetime, status: Optional[str], now: Optional[datetime] = None) -> int:
    return to_ms(fixture_ttl(match_date, status, now))


def details_ttl_ms(status: Optional[str]) -> int:
    return to_ms(details_ttl(status))


def lineups_ttl_ms(*_args, **_kwargs) -> int:
    return to_ms(LINEUPS_TTL)
