"""Off-peak / peak classification of load curve steps.

Off-peak intervals are configured per meter as times of day in the meter's
civil time (Europe/Paris for Linky meters). An interval whose start is after
its end wraps past midnight, e.g. 22:00-06:00. An end of "24:00" closes the
interval at midnight.

On daylight saving transition days a step is classified by the wall clock
time it carries, so the repeated 02:00-03:00 hour in October is classified
twice with the same result and the skipped hour in March never occurs.
"""

from datetime import datetime, time
from typing import Any, Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo

from conso_exporter.errors import ConfigError
from conso_exporter.models import OffPeakInterval, TariffBand

DEFAULT_TIMEZONE = "Europe/Paris"


def _parse_time_of_day(raw: Any, allow_end_of_day: bool) -> Optional[time]:
    """Parse "HH:MM" or {"hours": "HH", "minutes": "MM"} into a time.

    Returns None for 24:00 when allowed.
    """
    if isinstance(raw, str):
        parts = raw.strip().split(":")
        if len(parts) not in (2, 3):
            raise ConfigError(f"Invalid time of day: {raw!r}")
        hours, minutes = parts[0], parts[1]
    elif isinstance(raw, dict):
        hours = raw.get("hours", 0)
        minutes = raw.get("minutes", 0)
    else:
        raise ConfigError(f"Invalid time of day: {raw!r}")

    try:
        h = int(hours)
        m = int(minutes)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid time of day: {raw!r}")

    if h == 24 and m == 0 and allow_end_of_day:
        return None
    if not (0 <= h <= 23 and 0 <= m <= 59):
        raise ConfigError(f"Time of day out of range: {raw!r}")
    return time(h, m)


def parse_off_peak_interval(raw: dict) -> OffPeakInterval:
    """Parse one off-peak interval from the secrets file.

    Accepts both {"start": "22:00", "end": "06:00"} and the nested
    {"start": {"hours": "22", "minutes": "00"}, ...} form.

    Raises:
        ConfigError: If the interval is malformed or empty
    """
    if not isinstance(raw, dict) or "start" not in raw or "end" not in raw:
        raise ConfigError(f"Off-peak interval needs start and end: {raw!r}")

    start = _parse_time_of_day(raw["start"], allow_end_of_day=False)
    end = _parse_time_of_day(raw["end"], allow_end_of_day=True)
    interval = OffPeakInterval(start=start, end=end)

    if interval.start_minute == interval.end_minute:
        raise ConfigError(f"Off-peak interval {interval} is empty")
    return interval


def parse_off_peak_intervals(raw: Optional[Iterable[dict]]) -> List[OffPeakInterval]:
    """Parse a list of off-peak intervals, None meaning no intervals."""
    if not raw:
        return []
    return [parse_off_peak_interval(item) for item in raw]


def format_off_peak_interval(interval: OffPeakInterval) -> dict:
    """Serialize an interval back to the "HH:MM" form."""
    end = "24:00" if interval.end is None else interval.end.strftime("%H:%M")
    return {"start": interval.start.strftime("%H:%M"), "end": end}


def _seconds_of_day(moment: datetime) -> int:
    return moment.hour * 3600 + moment.minute * 60 + moment.second


def in_interval(moment: datetime, interval: OffPeakInterval) -> bool:
    """Test whether the wall clock time of `moment` falls in [start, end)."""
    t = _seconds_of_day(moment)
    start = interval.start_minute * 60
    end = interval.end_minute * 60

    if interval.wraps_midnight:
        return t >= start or t < end
    return start <= t < end


def classify(
    timestamp: datetime,
    off_peak_intervals: Sequence[OffPeakInterval],
    tz_name: str = DEFAULT_TIMEZONE,
) -> TariffBand:
    """Classify a load curve step into a tariff band.

    Args:
        timestamp: Step timestamp, naive in civil time or timezone-aware
        off_peak_intervals: Configured off-peak intervals for the meter
        tz_name: Civil time zone used for aware timestamps

    Returns:
        TariffBand with exactly one flag set

    Example:
        >>> hc = [OffPeakInterval(time(22, 0), time(6, 0))]
        >>> classify(datetime(2024, 1, 10, 23, 30), hc).off_peak
        True
    """
    if not off_peak_intervals:
        return TariffBand(undifferentiated=True)

    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(ZoneInfo(tz_name)).replace(tzinfo=None)

    if any(in_interval(timestamp, interval) for interval in off_peak_intervals):
        return TariffBand(off_peak=True)
    return TariffBand(peak=True)
