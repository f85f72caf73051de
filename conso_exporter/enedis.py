"""Enedis metering data client module.

This module handles:
- Calling the Enedis metering data API for one Linky meter (PRM)
- Refreshing the OAuth access token when the API rejects it
- Notifying the caller of rotated tokens so they can be persisted
- Parsing interval readings into DailyReading / LoadCurveReading
"""

import logging
import time
from datetime import date, datetime
from typing import Callable, List, Optional

import requests

from conso_exporter.errors import ProviderAuthError, ProviderFetchError
from conso_exporter.models import DailyReading, LoadCurveReading

# Configure module logger
logger = logging.getLogger(__name__)

TokenRefreshCallback = Callable[[str, str], None]


class LinkySession:
    """Authenticated session against the Enedis metering data API.

    The access token is short lived. When a request is rejected with 401/403
    the session exchanges its refresh token for a new pair, reports the new
    pair through `on_token_refresh` and replays the request once.

    Attributes:
        meter_id: Usage point identifier (PRM)
        api_url: Base URL of the metering data API
        token_url: OAuth token endpoint used for refreshes
        timeout: Per-request timeout in seconds
    """

    DEFAULT_API_URL = "https://gw.prd.api.enedis.fr"
    DEFAULT_TOKEN_URL = "https://gw.prd.api.enedis.fr/oauth2/v3/token"

    DAILY_CONSUMPTION_PATH = "/metering_data_dc/v5/daily_consumption"
    MAX_POWER_PATH = "/metering_data_dcmp/v5/daily_consumption_max_power"
    LOAD_CURVE_PATH = "/metering_data_clc/v5/consumption_load_curve"

    # Retry configuration
    MAX_RETRIES = 3
    RETRY_DELAY = 2  # seconds

    def __init__(
        self,
        access_token: str,
        refresh_token: str,
        meter_id: str,
        on_token_refresh: Optional[TokenRefreshCallback] = None,
        api_url: str = DEFAULT_API_URL,
        token_url: str = DEFAULT_TOKEN_URL,
        timeout: float = 30,
        http: Optional[requests.Session] = None,
    ):
        """Initialize the session.

        Args:
            access_token: Current access token
            refresh_token: Current refresh token
            meter_id: Usage point identifier (PRM)
            on_token_refresh: Called with (access_token, refresh_token) after a refresh
            api_url: Base URL of the metering data API
            token_url: OAuth token endpoint
            timeout: Per-request timeout in seconds
            http: Optional requests session (for testing)
        """
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.meter_id = meter_id
        self.on_token_refresh = on_token_refresh
        self.api_url = api_url.rstrip("/")
        self.token_url = token_url
        self.timeout = timeout
        self.http = http if http is not None else requests.Session()
        self.http.headers.update({"Accept": "application/json"})

    def refresh_tokens(self) -> None:
        """Exchange the refresh token for a new token pair.

        Raises:
            ProviderAuthError: If the token endpoint rejects the refresh
        """
        logger.info(f"Refreshing Enedis tokens for PRM {self.meter_id}")

        try:
            response = self.http.post(
                self.token_url,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": self.refresh_token,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ProviderAuthError(f"Token refresh failed: {e}")

        if response.status_code != 200:
            raise ProviderAuthError(f"Token refresh rejected with status {response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            raise ProviderAuthError("Token refresh returned invalid JSON")

        access_token = payload.get("access_token") or ""
        refresh_token = payload.get("refresh_token") or ""

        if access_token:
            self.access_token = access_token
        if refresh_token:
            self.refresh_token = refresh_token

        if self.on_token_refresh:
            # Report the pair now in use, unless nothing was issued at all
            if access_token or refresh_token:
                self.on_token_refresh(self.access_token, self.refresh_token)
            else:
                self.on_token_refresh("", "")

    def _get(self, path: str, start: date, end: date) -> dict:
        """GET a metering data endpoint with refresh and retry handling.

        Args:
            path: Endpoint path
            start: First day (included)
            end: Last day (excluded)

        Returns:
            Decoded JSON payload

        Raises:
            ProviderAuthError: If the API still rejects the token after a refresh
            ProviderFetchError: If the request fails after all retries
        """
        url = f"{self.api_url}{path}"
        params = {
            "usage_point_id": self.meter_id,
            "start": start.isoformat(),
            "end": end.isoformat(),
        }

        refreshed = False
        last_error = None
        attempt = 0

        while attempt < self.MAX_RETRIES:
            if attempt > 0:
                delay = self.RETRY_DELAY * (2 ** (attempt - 1))  # Exponential backoff
                logger.info(f"Retry {attempt}/{self.MAX_RETRIES} after {delay}s delay")
                time.sleep(delay)

            try:
                response = self.http.get(
                    url,
                    params=params,
                    headers={"Authorization": f"Bearer {self.access_token}"},
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                last_error = e
                logger.warning(f"Request failed (attempt {attempt + 1}): {e}")
                attempt += 1
                continue

            if response.status_code in (401, 403):
                if refreshed:
                    raise ProviderAuthError(f"Enedis rejected refreshed token for PRM {self.meter_id}")
                self.refresh_tokens()
                refreshed = True
                continue

            if response.status_code == 429 or response.status_code >= 500:
                last_error = f"HTTP {response.status_code}"
                logger.warning(f"Request failed (attempt {attempt + 1}): {last_error}")
                attempt += 1
                continue

            if response.status_code != 200:
                raise ProviderFetchError(
                    f"{path} returned status {response.status_code}: {response.text[:200]}"
                )

            try:
                return response.json()
            except ValueError:
                raise ProviderFetchError(f"{path} returned invalid JSON")

        raise ProviderFetchError(f"Request failed after {self.MAX_RETRIES} retries: {last_error}")

    @staticmethod
    def _interval_readings(payload: dict) -> List[dict]:
        try:
            readings = payload["meter_reading"]["interval_reading"]
        except (KeyError, TypeError):
            raise ProviderFetchError("Response has no meter_reading.interval_reading")
        return readings or []

    def _daily(self, path: str, start: date, end: date) -> List[DailyReading]:
        payload = self._get(path, start, end)
        try:
            return [
                DailyReading(
                    date=date.fromisoformat(item["date"][:10]),
                    value=float(item["value"]),
                )
                for item in self._interval_readings(payload)
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderFetchError(f"Invalid reading in {path}: {e}")

    def get_daily_consumption(self, start: date, end: date) -> List[DailyReading]:
        """Daily consumed energy in Wh."""
        return self._daily(self.DAILY_CONSUMPTION_PATH, start, end)

    def get_max_power(self, start: date, end: date) -> List[DailyReading]:
        """Daily maximum apparent power in VA.

        The API stamps each value with the time the maximum was reached;
        only the day is kept.
        """
        return self._daily(self.MAX_POWER_PATH, start, end)

    def get_load_curve(self, start: date, end: date) -> List[LoadCurveReading]:
        """Load curve steps (average power in W), at most 7 days per call.

        Timestamps are returned naive, in the meter's civil time.
        """
        payload = self._get(self.LOAD_CURVE_PATH, start, end)
        try:
            return [
                LoadCurveReading(
                    timestamp=datetime.fromisoformat(item["date"]).replace(tzinfo=None),
                    value=float(item["value"]),
                )
                for item in self._interval_readings(payload)
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderFetchError(f"Invalid load curve step: {e}")


def main():
    """Fetch the last week of daily consumption with tokens from the environment."""
    import os
    import sys
    from datetime import timedelta

    from dotenv import load_dotenv

    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    load_dotenv()

    session = LinkySession(
        access_token=os.getenv("LINKY_ACCESS_TOKEN", ""),
        refresh_token=os.getenv("LINKY_REFRESH_TOKEN", ""),
        meter_id=os.getenv("LINKY_PRM", ""),
        on_token_refresh=lambda at, rt: print("Tokens rotated, update your secrets file"),
    )

    today = date.today()
    try:
        readings = session.get_daily_consumption(today - timedelta(days=7), today)
    except (ProviderAuthError, ProviderFetchError) as e:
        print(f"FAILED: {e}")
        sys.exit(1)

    for reading in readings:
        print(f"{reading.date}: {reading.value / 1000:.3f} kWh")


if __name__ == "__main__":
    main()
