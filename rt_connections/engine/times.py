"""
Time helpers for GTFS schedules.

GTFS stop times are "HH:MM:SS" offsets from the service day and may run
past 24:00:00 for trips that finish after midnight. A ServiceDay anchors
those offsets to absolute epoch seconds.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from rt_connections.errors import ConfigError

SECONDS_PER_DAY = 24 * 3600


def parse_gtfs_duration(value: str) -> int:
    """Converts 'HH:MM:SS' string to seconds past the service day start. Handles > 24h.

    Forgiving to values that omit the seconds (e.g. '12:00').
    """
    if value is None or not str(value).strip():
        raise ValueError("Empty GTFS time")
    parts = [int(p) for p in str(value).strip().split(":")]
    hours = parts[0]
    minutes = parts[1] if len(parts) > 1 else 0
    seconds = parts[2] if len(parts) > 2 else 0
    return hours * 3600 + minutes * 60 + seconds


def format_gtfs_duration(total_seconds: int) -> str:
    hours, rest = divmod(int(total_seconds), 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def parse_gtfs_date(value: str) -> date:
    """'YYYYMMDD' -> date"""
    value = str(value).strip()
    return date(int(value[0:4]), int(value[4:6]), int(value[6:8]))


def format_gtfs_date(day: date) -> str:
    return day.strftime("%Y%m%d")


def resolve_timezone(name: Optional[str]) -> tzinfo:
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"Unknown timezone: {name}") from e


def to_iso_utc(epoch_seconds: int) -> str:
    """Epoch seconds -> '2024-01-01T08:00:00.000Z'"""
    dt = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.000Z")


@dataclass(frozen=True)
class ServiceDay:
    """A calendar date in the agency timezone.

    GTFS defines stop times relative to "noon minus 12h" of the service
    day, which only differs from midnight on DST transition days.
    """

    day: date
    tz: tzinfo = timezone.utc

    @classmethod
    def from_gtfs(cls, value: str, tz: tzinfo = timezone.utc) -> "ServiceDay":
        return cls(parse_gtfs_date(value), tz)

    @property
    def anchor(self) -> int:
        noon = datetime(self.day.year, self.day.month, self.day.day, 12, tzinfo=self.tz)
        return int(noon.timestamp()) - 12 * 3600

    def epoch(self, gtfs_time: str) -> int:
        """Absolute epoch seconds of a GTFS stop time on this service day."""
        return self.anchor + parse_gtfs_duration(gtfs_time)

    def to_datetime(self, gtfs_time: str) -> datetime:
        return datetime.fromtimestamp(self.epoch(gtfs_time), tz=self.tz)

    def shift(self, days: int) -> "ServiceDay":
        return ServiceDay(self.day + timedelta(days=days), self.tz)

    def gtfs_date(self) -> str:
        return format_gtfs_date(self.day)
