"""Gas series fetching and normalization."""

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Protocol, Sequence

from conso_exporter.errors import ProviderFetchError
from conso_exporter.models import FetchResult, GasAccount, GasReading, MeasurementPoint, TimeWindow

# Configure module logger
logger = logging.getLogger(__name__)

GAS_MEASUREMENT = "gas_import"


class GasClient(Protocol):
    def login(self, username: str, password: str) -> str: ...

    def get_consumption(self, token: str, meter_ids, start, end) -> Dict[str, List[GasReading]]: ...


GasClientFactory = Callable[[], GasClient]


def round_half_up(value: float, places: int = 2) -> float:
    """Round half away from zero, e.g. 1.005 -> 1.01 (round() gives 1.0)."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def normalize_gas_readings(meter_id: str, readings: Sequence[GasReading]) -> List[MeasurementPoint]:
    """Convert GRDF readings to gas_import points.

    Readings without a consumed energy (days not yet confirmed by a meter
    read) are dropped. The m3 field is derived from the day's conversion
    coefficient.
    """
    points = []
    for reading in readings:
        if reading.energy is None:
            continue
        if not reading.conversion_coefficient:
            logger.warning(f"PCE {meter_id}: no conversion coefficient for {reading.gas_day}, skipping")
            continue

        points.append(MeasurementPoint(
            measurement=GAS_MEASUREMENT,
            fields={
                "kWh": float(reading.energy),
                "m3": round_half_up(reading.energy / reading.conversion_coefficient, 2),
            },
            timestamp=datetime(
                reading.gas_day.year, reading.gas_day.month, reading.gas_day.day,
                tzinfo=timezone.utc,
            ),
            tags={"meterId": meter_id},
        ))
    return points


def fetch_gas(account: GasAccount, window: TimeWindow, client_factory: GasClientFactory) -> FetchResult:
    """Fetch and normalize daily gas consumption for one meter.

    Raises:
        ProviderError: If login or the consumption request fails
    """
    client = client_factory()
    token = client.login(account.username, account.password)
    consumption = client.get_consumption(token, [account.meter_id], window.start, window.end)

    if account.meter_id not in consumption:
        raise ProviderFetchError(f"No consumption returned for PCE {account.meter_id}")

    readings = consumption[account.meter_id]
    points = normalize_gas_readings(account.meter_id, readings)
    logger.info(f"PCE {account.meter_id}: {len(points)} of {len(readings)} readings kept")

    return FetchResult(meter_id=account.meter_id, points=points)
