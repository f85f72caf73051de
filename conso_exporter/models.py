"""Data model shared by the fetchers, the orchestrator and the writers.

Provider readings are kept close to what the APIs return (values in W or Wh
for Enedis, kWh for GRDF). Normalized points are what ends up in InfluxDB.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class OffPeakInterval:
    """A recurring daily off-peak window in the meter's civil time.

    Attributes:
        start: Start of the window (inclusive)
        end: End of the window (exclusive), None meaning 24:00
    """
    start: time
    end: Optional[time] = None

    @property
    def start_minute(self) -> int:
        return self.start.hour * 60 + self.start.minute

    @property
    def end_minute(self) -> int:
        if self.end is None:
            return 24 * 60
        return self.end.hour * 60 + self.end.minute

    @property
    def wraps_midnight(self) -> bool:
        return self.start_minute > self.end_minute

    def __str__(self) -> str:
        end = "24:00" if self.end is None else self.end.strftime("%H:%M")
        return f"{self.start.strftime('%H:%M')}-{end}"


@dataclass(frozen=True)
class ElectricityAccount:
    """Credentials and options for one Linky meter.

    Attributes:
        access_token: Current API access token
        refresh_token: Current API refresh token
        meter_id: Point de reference mesure (PRM)
        load_curve_enabled: Whether to fetch the 30-minute load curve
        off_peak_intervals: Off-peak windows used to tag load curve points
    """
    access_token: str
    refresh_token: str
    meter_id: str
    load_curve_enabled: bool = False
    off_peak_intervals: Tuple[OffPeakInterval, ...] = ()


@dataclass(frozen=True)
class GasAccount:
    """Credentials for one Gazpar meter.

    Attributes:
        username: GRDF customer space login
        password: GRDF customer space password
        meter_id: Point de comptage et d'estimation (PCE)
    """
    username: str
    password: str
    meter_id: str


@dataclass(frozen=True)
class TimeWindow:
    """Date range to query, end excluded by the provider APIs."""
    start: date
    end: date

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"Window start {self.start} is after end {self.end}")

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def __str__(self) -> str:
        return f"{self.start.isoformat()} -> {self.end.isoformat()}"


@dataclass(frozen=True)
class DailyReading:
    """A daily Enedis reading (Wh for energy, VA for max power)."""
    date: date
    value: float


@dataclass(frozen=True)
class LoadCurveReading:
    """A load curve step, timestamp in the meter's civil time (naive)."""
    timestamp: datetime
    value: float


@dataclass(frozen=True)
class GasReading:
    """A GRDF informative reading.

    Attributes:
        gas_day: Gas day the consumption is attributed to
        energy: Consumed energy in kWh, None until the read is confirmed
        conversion_coefficient: kWh per m3 for that day
    """
    gas_day: date
    energy: Optional[float]
    conversion_coefficient: Optional[float]


@dataclass(frozen=True)
class TariffBand:
    """Tariff classification of a load curve step; exactly one flag is set."""
    off_peak: bool = False
    peak: bool = False
    undifferentiated: bool = False

    def as_tags(self) -> Dict[str, str]:
        return {
            "offPeak": "1" if self.off_peak else "0",
            "peak": "1" if self.peak else "0",
            "undifferentiated": "1" if self.undifferentiated else "0",
        }


@dataclass
class MeasurementPoint:
    """A normalized time-series point.

    Attributes:
        measurement: InfluxDB measurement name
        fields: Numeric fields
        timestamp: Timezone-aware UTC instant
        tags: String tags
    """
    measurement: str
    fields: Dict[str, float]
    timestamp: datetime
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class SubWindowFailure:
    """A load curve sub-window that could not be fetched."""
    window: TimeWindow
    error: str


@dataclass
class FetchResult:
    """Points gathered for one account, plus the sub-windows that failed."""
    meter_id: str
    points: List[MeasurementPoint] = field(default_factory=list)
    failures: List[SubWindowFailure] = field(default_factory=list)


@dataclass(frozen=True)
class CredentialUpdated:
    """Event emitted when the Enedis session rotates its tokens."""
    meter_id: str
    access_token: str
    refresh_token: str


@dataclass
class AccountOutcome:
    """Result of processing one account during a run."""
    provider: str
    meter_id: str
    success: bool
    point_count: int = 0
    error: Optional[str] = None
    skipped_windows: List[SubWindowFailure] = field(default_factory=list)


@dataclass
class RunReport:
    """Summary of one synchronization run.

    A run is completed once every account was attempted, whatever the
    per-account outcomes. The final write is the only run-level failure.
    """
    window: TimeWindow
    outcomes: List[AccountOutcome] = field(default_factory=list)
    points_written: int = 0
    write_error: Optional[str] = None

    @property
    def write_ok(self) -> bool:
        return self.write_error is None

    @property
    def failed_accounts(self) -> List[AccountOutcome]:
        return [o for o in self.outcomes if not o.success]
