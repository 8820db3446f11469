import logging
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

UTC = timezone.utc


def find_zone(name: str | None) -> ZoneInfo | None:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return None


def get_zone(name: str | None) -> ZoneInfo:
    """Return the tenant zone, falling back to UTC for unknown names."""
    zone = find_zone(name)
    if zone is None:
        logger.warning("unknown timezone %r, falling back to UTC", name)
        return ZoneInfo("UTC")
    return zone


def to_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return dt.astimezone(UTC).replace(tzinfo=None)


def utc_naive_to_aware(dt: datetime) -> datetime:
    return dt.replace(tzinfo=UTC)


def utc_naive_to_zone(dt: datetime, zone: ZoneInfo) -> datetime:
    return dt.replace(tzinfo=UTC).astimezone(zone)


def local_to_utc_naive(day: date, wall_clock: time, zone: ZoneInfo) -> datetime:
    return to_utc_naive(datetime.combine(day, wall_clock, tzinfo=zone))


def wall_clock_exists(day: date, wall_clock: time, zone: ZoneInfo) -> bool:
    """False for local times skipped by a forward DST jump."""
    local = datetime.combine(day, wall_clock, tzinfo=zone)
    round_trip = local.astimezone(UTC).astimezone(zone)
    return round_trip.replace(tzinfo=None) == local.replace(tzinfo=None)


def utc_now_naive() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def today_in(zone: ZoneInfo) -> date:
    return datetime.now(zone).date()
