"""InfluxDB exporter module.

This module handles:
- Connecting to InfluxDB and checking its health
- Converting MeasurementPoint objects to InfluxDB points
- Writing a run's points in one synchronous batch
"""

import logging
from typing import List, Optional, Sequence

from influxdb_client import InfluxDBClient, Point, WritePrecision
from influxdb_client.client.write_api import SYNCHRONOUS

from conso_exporter.errors import PersistenceError
from conso_exporter.models import MeasurementPoint

# Configure module logger
logger = logging.getLogger(__name__)


def to_influx_point(point: MeasurementPoint) -> Point:
    """Build an InfluxDB point, stamped with second precision."""
    record = Point(point.measurement)
    for name, value in sorted(point.tags.items()):
        record = record.tag(name, value)
    for name, value in point.fields.items():
        record = record.field(name, float(value))
    return record.time(int(point.timestamp.timestamp()), WritePrecision.S)


class InfluxDBExporter:
    """InfluxDB writer for electricity and gas consumption points.

    Measurements:
    - energy_import: Daily consumed electricity (kWh)
    - max_power: Daily maximum apparent power (kVA)
    - load_curve: 30-minute average power (kW), tagged offPeak/peak/undifferentiated
    - gas_import: Daily consumed gas (kWh, m3)

    Tags:
    - meterId: PRM or PCE

    Attributes:
        url: InfluxDB server URL
        token: InfluxDB API token
        org: InfluxDB organization
        bucket: InfluxDB bucket name
        timeout: Request timeout in milliseconds
    """

    def __init__(
        self,
        url: str = "http://localhost:8086",
        token: str = "",
        org: str = "conso",
        bucket: str = "conso",
        timeout: int = 30_000,
    ):
        """Initialize the InfluxDB exporter.

        Args:
            url: InfluxDB server URL
            token: InfluxDB API token (required for writes)
            org: InfluxDB organization name
            bucket: InfluxDB bucket name
            timeout: Request timeout in milliseconds
        """
        self.url = url
        self.token = token
        self.org = org
        self.bucket = bucket
        self.timeout = timeout
        self._client: Optional[InfluxDBClient] = None
        self._write_api = None

    def connect(self) -> bool:
        """Connect to InfluxDB.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            self._client = InfluxDBClient(
                url=self.url,
                token=self.token,
                org=self.org,
                timeout=self.timeout,
            )
            self._write_api = self._client.write_api(write_options=SYNCHRONOUS)

            # Test connection by pinging
            health = self._client.health()
            if health.status == "pass":
                logger.info(f"Connected to InfluxDB at {self.url}")
                return True
            else:
                logger.error(f"InfluxDB health check failed: {health.message}")
                return False
        except Exception as e:
            logger.error(f"Failed to connect to InfluxDB: {e}")
            return False

    def close(self) -> None:
        """Close the InfluxDB connection."""
        if self._client:
            self._write_api.close()
            self._client.close()
            self._client = None
            self._write_api = None
            logger.info("InfluxDB connection closed")

    def write_points(self, points: Sequence[MeasurementPoint]) -> int:
        """Write all points of a run in one batch.

        The write API is synchronous, so the points are flushed when this
        returns.

        Args:
            points: Normalized points

        Returns:
            Number of points written

        Raises:
            PersistenceError: If not connected or the write fails
        """
        if not self._write_api:
            raise PersistenceError("Not connected to InfluxDB. Call connect() first.")

        if not points:
            logger.warning("No points to write")
            return 0

        records: List[Point] = [to_influx_point(p) for p in points]

        try:
            self._write_api.write(bucket=self.bucket, org=self.org, record=records)
        except Exception as e:
            logger.error(f"Failed to write to InfluxDB: {e}")
            raise PersistenceError(f"InfluxDB write failed: {e}")

        logger.info(f"Wrote {len(records)} points to InfluxDB bucket {self.bucket}")
        return len(records)
