"""Electricity series fetching and normalization.

For one Linky meter this module fetches:
- daily consumed energy (energy_import, kWh)
- daily maximum apparent power (max_power, kVA)
- optionally the 30-minute load curve (load_curve, kW), one week at a time,
  tagged with its tariff band

Daily values are stamped at midnight UTC of their day. Load curve steps are
converted from the meter's civil time to UTC.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol, Sequence
from zoneinfo import ZoneInfo

from conso_exporter.errors import ProviderError
from conso_exporter.models import (
    DailyReading,
    ElectricityAccount,
    FetchResult,
    LoadCurveReading,
    MeasurementPoint,
    OffPeakInterval,
    SubWindowFailure,
    TimeWindow,
)
from conso_exporter.tariff import DEFAULT_TIMEZONE, classify
from conso_exporter.window import LOAD_CURVE_CHUNK_DAYS, split_window

# Configure module logger
logger = logging.getLogger(__name__)

ENERGY_MEASUREMENT = "energy_import"
MAX_POWER_MEASUREMENT = "max_power"
LOAD_CURVE_MEASUREMENT = "load_curve"


class ElectricitySession(Protocol):
    def get_daily_consumption(self, start, end) -> List[DailyReading]: ...

    def get_max_power(self, start, end) -> List[DailyReading]: ...

    def get_load_curve(self, start, end) -> List[LoadCurveReading]: ...


# (account, on_token_refresh) -> session
SessionFactory = Callable[[ElectricityAccount, Callable[[str, str], None]], ElectricitySession]
RefreshHandler = Callable[[str, str, str], object]


def _midnight_utc(day) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def daily_points(
    measurement: str,
    field_name: str,
    meter_id: str,
    readings: Sequence[DailyReading],
) -> List[MeasurementPoint]:
    """Convert daily W/Wh/VA readings to points in k-units."""
    return [
        MeasurementPoint(
            measurement=measurement,
            fields={field_name: reading.value / 1000},
            timestamp=_midnight_utc(reading.date),
            tags={"meterId": meter_id},
        )
        for reading in readings
    ]


def load_curve_points(
    meter_id: str,
    readings: Sequence[LoadCurveReading],
    off_peak_intervals: Sequence[OffPeakInterval],
    tz_name: str = DEFAULT_TIMEZONE,
) -> List[MeasurementPoint]:
    """Convert load curve steps to kW points tagged with their tariff band.

    Naive step timestamps are in `tz_name` civil time; the tariff band is
    computed on that civil time and the point is stamped in UTC. A naive
    timestamp seen twice (the repeated hour when summer time ends) maps its
    second occurrence to the later UTC instant.
    """
    tz = ZoneInfo(tz_name)
    points = []
    seen = set()

    for reading in readings:
        local = reading.timestamp
        if local.tzinfo is None:
            local = local.replace(tzinfo=tz, fold=1 if local in seen else 0)
            seen.add(reading.timestamp)

        band = classify(local, off_peak_intervals, tz_name)
        tags = {"meterId": meter_id}
        tags.update(band.as_tags())

        points.append(MeasurementPoint(
            measurement=LOAD_CURVE_MEASUREMENT,
            fields={"kW": reading.value / 1000},
            timestamp=local.astimezone(timezone.utc),
            tags=tags,
        ))
    return points


def fetch_electricity(
    account: ElectricityAccount,
    window: TimeWindow,
    session_factory: SessionFactory,
    on_refresh: Optional[RefreshHandler] = None,
    tz_name: str = DEFAULT_TIMEZONE,
) -> FetchResult:
    """Fetch and normalize all electricity series for one meter.

    Load curve sub-windows that fail are recorded in the result and do not
    stop the remaining sub-windows.

    Args:
        account: Meter credentials and options
        window: Date range to fetch
        session_factory: Builds an authenticated session for the account
        on_refresh: Called with (meter_id, access_token, refresh_token) when
            the session rotates its tokens
        tz_name: Civil time zone of the load curve

    Returns:
        FetchResult with the points and the failed load curve sub-windows

    Raises:
        ProviderError: If the daily series cannot be fetched
    """
    meter_id = account.meter_id

    def token_refreshed(access_token: str, refresh_token: str) -> None:
        if on_refresh is not None:
            on_refresh(meter_id, access_token, refresh_token)

    session = session_factory(account, token_refreshed)
    result = FetchResult(meter_id=meter_id)

    consumption = session.get_daily_consumption(window.start, window.end)
    result.points.extend(daily_points(ENERGY_MEASUREMENT, "kWh", meter_id, consumption))

    max_power = session.get_max_power(window.start, window.end)
    result.points.extend(daily_points(MAX_POWER_MEASUREMENT, "kVA", meter_id, max_power))

    logger.info(f"PRM {meter_id}: {len(consumption)} daily energy, {len(max_power)} max power readings")

    if not account.load_curve_enabled:
        return result

    for chunk in split_window(window, LOAD_CURVE_CHUNK_DAYS):
        logger.info(f"PRM {meter_id}: load curve period {chunk}")
        try:
            steps = session.get_load_curve(chunk.start, chunk.end)
        except ProviderError as e:
            logger.error(f"PRM {meter_id}: could not fetch load curve for {chunk}: {e}")
            result.failures.append(SubWindowFailure(window=chunk, error=str(e)))
            continue

        result.points.extend(
            load_curve_points(meter_id, steps, account.off_peak_intervals, tz_name)
        )

    return result
