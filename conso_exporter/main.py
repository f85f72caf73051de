"""Main entry point for the Conso exporter.

This module handles:
- Loading configuration from environment variables
- Loading provider credentials from the secrets file
- Scheduling daily synchronization runs with APScheduler
- Wiring the Enedis / GRDF clients, InfluxDB and Prometheus together
"""

import argparse
import logging
import os
import sys
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv

from conso_exporter.credentials import CredentialRefreshHandler, JsonCredentialStore
from conso_exporter.enedis import LinkySession
from conso_exporter.errors import ConfigError, PersistenceError
from conso_exporter.exporter import SyncMetrics
from conso_exporter.grdf import GRDFClient
from conso_exporter.influxdb_exporter import InfluxDBExporter
from conso_exporter.models import ElectricityAccount
from conso_exporter.orchestrator import SyncOrchestrator

# Configure module logger
logger = logging.getLogger(__name__)

# Configuration from environment
config = {
    "secrets_file": "./secrets/secrets.json",
    "scrape_hour": 8,
    "exporter_port": 9121,
    "first_run_days": 365,
    "recurring_days": 7,
    "meter_timezone": "Europe/Paris",
    "request_timeout": 30,
    "enedis_api_url": LinkySession.DEFAULT_API_URL,
    "enedis_token_url": LinkySession.DEFAULT_TOKEN_URL,
    # InfluxDB config
    "influxdb_url": "http://localhost:8086",
    "influxdb_token": "",
    "influxdb_org": "conso",
    "influxdb_bucket": "conso",
}


def _int_from_env(name: str, key: str, default: int) -> None:
    try:
        config[key] = int(os.getenv(name, str(default)))
    except ValueError:
        logger.warning(f"Invalid {name}, using default: {default}")
        config[key] = default


def load_config() -> bool:
    """Load configuration from environment variables.

    Required:
        INFLUXDB_TOKEN: InfluxDB API token

    Optional:
        SECRETS_FILE: Credential file (default: ./secrets/secrets.json)
        SCRAPE_HOUR: Hour to run daily sync (default: 8)
        EXPORTER_PORT: Prometheus port, 0 to disable (default: 9121)
        FIRST_RUN_DAYS: Lookback of the startup run (default: 365)
        RECURRING_DAYS: Lookback of daily runs (default: 7)
        METER_TIMEZONE: Civil time zone of the meters (default: Europe/Paris)
        REQUEST_TIMEOUT: Provider request timeout in seconds (default: 30)
        ENEDIS_API_URL: Enedis metering data API base URL
        ENEDIS_TOKEN_URL: Enedis OAuth token endpoint
        INFLUXDB_URL: InfluxDB server URL (default: http://localhost:8086)
        INFLUXDB_ORG: InfluxDB organization (default: conso)
        INFLUXDB_BUCKET: InfluxDB bucket (default: conso)

    Returns:
        True if all required config loaded, False otherwise
    """
    config["secrets_file"] = os.getenv("SECRETS_FILE", "./secrets/secrets.json")
    config["meter_timezone"] = os.getenv("METER_TIMEZONE", "Europe/Paris")
    config["enedis_api_url"] = os.getenv("ENEDIS_API_URL", LinkySession.DEFAULT_API_URL)
    config["enedis_token_url"] = os.getenv("ENEDIS_TOKEN_URL", LinkySession.DEFAULT_TOKEN_URL)

    # Optional with defaults
    _int_from_env("SCRAPE_HOUR", "scrape_hour", 8)
    _int_from_env("EXPORTER_PORT", "exporter_port", 9121)
    _int_from_env("FIRST_RUN_DAYS", "first_run_days", 365)
    _int_from_env("RECURRING_DAYS", "recurring_days", 7)
    _int_from_env("REQUEST_TIMEOUT", "request_timeout", 30)

    # InfluxDB configuration
    config["influxdb_url"] = os.getenv("INFLUXDB_URL", "http://localhost:8086")
    config["influxdb_token"] = os.getenv("INFLUXDB_TOKEN", "")
    config["influxdb_org"] = os.getenv("INFLUXDB_ORG", "conso")
    config["influxdb_bucket"] = os.getenv("INFLUXDB_BUCKET", "conso")

    # Validate required config
    missing = []
    if not config["influxdb_token"]:
        missing.append("INFLUXDB_TOKEN")

    if missing:
        logger.error(f"Missing required environment variables: {', '.join(missing)}")
        return False

    if not 0 <= config["scrape_hour"] <= 23:
        logger.error(f"SCRAPE_HOUR must be between 0 and 23, got {config['scrape_hour']}")
        return False

    try:
        ZoneInfo(config["meter_timezone"])
    except (ZoneInfoNotFoundError, ValueError):
        logger.error(f"Unknown METER_TIMEZONE: {config['meter_timezone']}")
        return False

    logger.info(f"Configuration loaded: secrets_file={config['secrets_file']}, "
                f"scrape_hour={config['scrape_hour']}, "
                f"influxdb_url={config['influxdb_url']}")
    return True


def make_session_factory() -> Callable[[ElectricityAccount, Callable[[str, str], None]], LinkySession]:
    """Build Enedis sessions from the loaded configuration."""
    def factory(account: ElectricityAccount, on_token_refresh: Callable[[str, str], None]) -> LinkySession:
        return LinkySession(
            access_token=account.access_token,
            refresh_token=account.refresh_token,
            meter_id=account.meter_id,
            on_token_refresh=on_token_refresh,
            api_url=config["enedis_api_url"],
            token_url=config["enedis_token_url"],
            timeout=config["request_timeout"],
        )
    return factory


def make_gas_client_factory() -> Callable[[], GRDFClient]:
    """Build GRDF clients from the loaded configuration."""
    return lambda: GRDFClient(timeout=config["request_timeout"])


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export Linky and Gazpar consumption to InfluxDB")
    parser.add_argument(
        "--once",
        action="store_true",
        help="run a single first-run sync and exit (non-zero if the InfluxDB write failed)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point.

    1. Load .env file with python-dotenv
    2. Load and validate configuration and credentials
    3. Connect to InfluxDB
    4. Start Prometheus HTTP server (for operational metrics)
    5. Run the first sync at startup
    6. Keep running daily syncs (block on scheduler), unless --once

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    args = parse_args(argv)

    # Load .env file
    load_dotenv()

    # Configure logging
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    logger.info("Conso exporter starting")

    # Load configuration
    if not load_config():
        logger.error("Configuration failed, exiting")
        return 1

    try:
        credentials = CredentialRefreshHandler(JsonCredentialStore(config["secrets_file"]))
    except (ConfigError, PersistenceError) as e:
        logger.error(f"Could not load credentials: {e}")
        return 1

    # Initialize InfluxDB exporter
    influxdb_exporter = InfluxDBExporter(
        url=config["influxdb_url"],
        token=config["influxdb_token"],
        org=config["influxdb_org"],
        bucket=config["influxdb_bucket"],
        timeout=config["request_timeout"] * 1000,
    )

    if not influxdb_exporter.connect():
        logger.error("Failed to connect to InfluxDB, exiting")
        return 1

    # Initialize Prometheus exporter (for operational metrics)
    metrics = None
    if config["exporter_port"] and not args.once:
        metrics = SyncMetrics(port=config["exporter_port"])
        metrics.start()
        logger.info(f"Prometheus metrics available at http://localhost:{config['exporter_port']}/metrics")

    orchestrator = SyncOrchestrator(
        credentials=credentials,
        writer=influxdb_exporter,
        session_factory=make_session_factory(),
        gas_client_factory=make_gas_client_factory(),
        metrics=metrics,
        first_run_days=config["first_run_days"],
        recurring_days=config["recurring_days"],
        tz_name=config["meter_timezone"],
    )

    if args.once:
        report = orchestrator.run(is_first_run=True)
        influxdb_exporter.close()
        return 0 if report is not None and report.write_ok else 1

    # Create scheduler
    scheduler = BlockingScheduler()

    # Add daily sync job
    trigger = CronTrigger(hour=config["scrape_hour"], minute=0)
    scheduler.add_job(
        orchestrator.run,
        trigger=trigger,
        kwargs={"is_first_run": False},
        id="daily_sync",
        name=f"Daily sync at {config['scrape_hour']}:00",
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"Scheduled daily sync at {config['scrape_hour']}:00")

    # Run first sync at startup
    logger.info("Running first sync at startup")
    orchestrator.run(is_first_run=True)

    # Start scheduler (blocks)
    logger.info("Starting scheduler, press Ctrl+C to exit")
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Received interrupt, shutting down")
        scheduler.shutdown(wait=False)
    finally:
        influxdb_exporter.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
