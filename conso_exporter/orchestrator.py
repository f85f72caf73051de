"""Synchronization run orchestration.

A run resolves the query window, fetches every electricity then every gas
account one after the other, and writes everything gathered in one batch.
A failing account is logged and skipped; only the final write can fail the
run as a whole.
"""

import logging
import threading
import time
from datetime import date
from functools import partial
from typing import Callable, List, Optional, Protocol, Sequence

from conso_exporter.credentials import CredentialRefreshHandler
from conso_exporter.electricity import SessionFactory, fetch_electricity
from conso_exporter.errors import PersistenceError
from conso_exporter.exporter import SyncMetrics
from conso_exporter.gas import GasClientFactory, fetch_gas
from conso_exporter.models import AccountOutcome, FetchResult, MeasurementPoint, RunReport
from conso_exporter.tariff import DEFAULT_TIMEZONE
from conso_exporter.window import FIRST_RUN_DAYS, RECURRING_DAYS, resolve_window

# Configure module logger
logger = logging.getLogger(__name__)

ELECTRICITY = "electricity"
GAS = "gas"


class PointWriter(Protocol):
    def write_points(self, points: Sequence[MeasurementPoint]) -> int: ...


class SyncOrchestrator:
    """Runs the incremental synchronization for all configured accounts.

    Attributes:
        credentials: Refresh handler holding the current credential set
        writer: Time-series storage (InfluxDBExporter or a fake)
        session_factory: Builds Enedis sessions
        gas_client_factory: Builds GRDF clients
        metrics: Optional Prometheus metrics
    """

    def __init__(
        self,
        credentials: CredentialRefreshHandler,
        writer: PointWriter,
        session_factory: SessionFactory,
        gas_client_factory: GasClientFactory,
        metrics: Optional[SyncMetrics] = None,
        first_run_days: int = FIRST_RUN_DAYS,
        recurring_days: int = RECURRING_DAYS,
        tz_name: str = DEFAULT_TIMEZONE,
        today: Optional[Callable[[], date]] = None,
    ):
        self.credentials = credentials
        self.writer = writer
        self.session_factory = session_factory
        self.gas_client_factory = gas_client_factory
        self.metrics = metrics
        self.first_run_days = first_run_days
        self.recurring_days = recurring_days
        self.tz_name = tz_name
        self._today = today or date.today
        self._run_lock = threading.Lock()

    def run(self, is_first_run: bool = False) -> Optional[RunReport]:
        """Execute one synchronization run.

        Args:
            is_first_run: True for the startup run (long lookback)

        Returns:
            RunReport, or None if another run was still in progress
        """
        if not self._run_lock.acquire(blocking=False):
            logger.warning("Previous run still in progress, skipping this one")
            return None

        try:
            return self._run(is_first_run)
        finally:
            self._run_lock.release()

    def _run(self, is_first_run: bool) -> RunReport:
        start_time = time.time()
        window = resolve_window(
            is_first_run,
            today=self._today(),
            first_run_days=self.first_run_days,
            recurring_days=self.recurring_days,
        )
        logger.info(f"Starting {'first' if is_first_run else 'scheduled'} run for {window}")

        report = RunReport(window=window)
        points: List[MeasurementPoint] = []
        credentials = self.credentials.credentials

        for account in credentials.electricity:
            outcome = self._collect(
                ELECTRICITY,
                account.meter_id,
                partial(
                    fetch_electricity,
                    account,
                    window,
                    self.session_factory,
                    on_refresh=self.credentials.on_refresh,
                    tz_name=self.tz_name,
                ),
                points,
            )
            report.outcomes.append(outcome)

        for account in credentials.gas:
            outcome = self._collect(
                GAS,
                account.meter_id,
                partial(fetch_gas, account, window, self.gas_client_factory),
                points,
            )
            report.outcomes.append(outcome)

        try:
            report.points_written = self.writer.write_points(points)
            logger.info(f"SUCCESS: database updated with {report.points_written} points")
        except PersistenceError as e:
            report.write_error = str(e)
            logger.error(f"FAILURE: could not write {len(points)} points: {e}")

        failed = report.failed_accounts
        logger.info(f"Run completed: {len(report.outcomes) - len(failed)} accounts succeeded, "
                    f"{len(failed)} failed")

        if self.metrics:
            self.metrics.record_run(report, time.time() - start_time)

        return report

    def _collect(
        self,
        provider: str,
        meter_id: str,
        fetch: Callable[[], FetchResult],
        points: List[MeasurementPoint],
    ) -> AccountOutcome:
        """Run one account's fetch, isolating any failure."""
        try:
            result = fetch()
        except Exception as e:
            logger.error(f"FAILURE({meter_id}): could not fetch {provider} data: {e}")
            return AccountOutcome(provider=provider, meter_id=meter_id, success=False, error=str(e))

        points.extend(result.points)

        for failure in result.failures:
            logger.warning(f"PARTIAL({meter_id}): load curve missing for {failure.window}: {failure.error}")

        logger.info(f"SUCCESS({meter_id}): {len(result.points)} {provider} points gathered")
        return AccountOutcome(
            provider=provider,
            meter_id=meter_id,
            success=True,
            point_count=len(result.points),
            skipped_windows=list(result.failures),
        )
