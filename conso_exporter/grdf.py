"""GRDF customer space client module.

This module handles:
- Logging in to the GRDF customer space (monespace.grdf.fr)
- Downloading informative gas consumption for one or more PCE
- Parsing daily releves into GasReading objects
"""

import logging
from datetime import date
from typing import Dict, List, Optional, Sequence

import requests

from conso_exporter.errors import ProviderAuthError, ProviderFetchError
from conso_exporter.models import GasReading

# Configure module logger
logger = logging.getLogger(__name__)


class GRDFClient:
    """Client for the GRDF customer space consumption API.

    Login yields an `auth_token` cookie value which is then sent with every
    consumption request.

    Attributes:
        timeout: Per-request timeout in seconds
    """

    LOGIN_URL = "https://login.monespace.grdf.fr/sofit-account-api/api/v1/auth"
    LOGIN_GOTO = "https://sofa-connexion.grdf.fr:443/openam/oauth2/externeGrdf/authorize"
    CONSUMPTION_URL = "https://monespace.grdf.fr/api/e-conso/pce/consommation/informatives"
    AUTH_COOKIE = "auth_token"

    def __init__(self, timeout: float = 30, http: Optional[requests.Session] = None):
        """Initialize the client.

        Args:
            timeout: Per-request timeout in seconds
            http: Optional requests session (for testing)
        """
        self.timeout = timeout
        self.http = http if http is not None else requests.Session()
        self.http.headers.update({
            "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
            "Accept": "application/json",
        })

    def login(self, username: str, password: str) -> str:
        """Authenticate with the customer space.

        Returns:
            Auth token to pass to get_consumption()

        Raises:
            ProviderAuthError: If authentication fails
        """
        logger.info(f"Authenticating to GRDF as {username}")

        try:
            response = self.http.post(
                self.LOGIN_URL,
                data={
                    "email": username,
                    "password": password,
                    "capp": "meg",
                    "goto": self.LOGIN_GOTO,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ProviderAuthError(f"GRDF login failed: {e}")

        if response.status_code != 200:
            raise ProviderAuthError(f"GRDF login rejected with status {response.status_code}")

        try:
            state = response.json().get("state")
        except ValueError:
            raise ProviderAuthError("GRDF login returned invalid JSON")

        if state != "SUCCESS":
            raise ProviderAuthError(f"GRDF login failed with state {state}")

        token = response.cookies.get(self.AUTH_COOKIE)
        if not token:
            raise ProviderAuthError("GRDF login did not return an auth token")

        logger.info("GRDF authentication successful")
        return token

    def get_consumption(
        self,
        token: str,
        meter_ids: Sequence[str],
        start: date,
        end: date,
    ) -> Dict[str, List[GasReading]]:
        """Download informative consumption readings.

        Args:
            token: Auth token from login()
            meter_ids: PCE identifiers
            start: First gas day
            end: Last gas day

        Returns:
            Mapping of PCE to its readings

        Raises:
            ProviderAuthError: If the token is rejected
            ProviderFetchError: If the request fails or the payload is invalid
        """
        params = [("dateDebut", start.isoformat()), ("dateFin", end.isoformat())]
        params += [("pceList[]", meter_id) for meter_id in meter_ids]

        try:
            response = self.http.get(
                self.CONSUMPTION_URL,
                params=params,
                cookies={self.AUTH_COOKIE: token},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ProviderFetchError(f"GRDF consumption request failed: {e}")

        if response.status_code in (401, 403):
            raise ProviderAuthError(f"GRDF rejected auth token with status {response.status_code}")
        if response.status_code != 200:
            raise ProviderFetchError(f"GRDF consumption returned status {response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            raise ProviderFetchError("GRDF consumption returned invalid JSON")

        if not isinstance(payload, dict):
            raise ProviderFetchError(f"Unexpected GRDF payload type: {type(payload)}")

        return {
            meter_id: self._parse_releves(meter_id, entry)
            for meter_id, entry in payload.items()
        }

    @staticmethod
    def _parse_releves(meter_id: str, entry: dict) -> List[GasReading]:
        readings = []
        try:
            for releve in entry.get("releves") or []:
                energy = releve.get("energieConsomme")
                coefficient = releve.get("coeffConversion")
                readings.append(GasReading(
                    gas_day=date.fromisoformat(releve["journeeGaziere"][:10]),
                    energy=float(energy) if energy is not None else None,
                    conversion_coefficient=float(coefficient) if coefficient is not None else None,
                ))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ProviderFetchError(f"Invalid GRDF releve for PCE {meter_id}: {e}")
        return readings
