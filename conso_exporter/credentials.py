"""Credential storage and token refresh persistence.

Credentials live in a JSON secrets file with two collections:

    {
      "linky": [{"accessToken": "...", "refreshToken": "...", "PRM": "...",
                 "isLoadCurve": true, "hc": [{"start": "22:00", "end": "06:00"}]}],
      "gazpar": [{"username": "...", "password": "...", "PCE": "..."}]
    }

The file is read once at startup and rewritten in full, atomically, every
time the Enedis session rotates the tokens of one meter.
"""

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from conso_exporter.errors import ConfigError, PersistenceError
from conso_exporter.models import CredentialUpdated, ElectricityAccount, GasAccount
from conso_exporter.tariff import format_off_peak_interval, parse_off_peak_intervals

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialSet:
    """All configured accounts, keyed by meter identifier in each collection."""
    electricity: Tuple[ElectricityAccount, ...] = ()
    gas: Tuple[GasAccount, ...] = ()

    def __post_init__(self):
        for name, accounts in (("electricity", self.electricity), ("gas", self.gas)):
            seen = set()
            for account in accounts:
                if account.meter_id in seen:
                    raise ConfigError(f"Duplicate {name} meter {account.meter_id}")
                seen.add(account.meter_id)

    def electricity_account(self, meter_id: str) -> Optional[ElectricityAccount]:
        for account in self.electricity:
            if account.meter_id == meter_id:
                return account
        return None

    def with_electricity_tokens(self, meter_id: str, access_token: str, refresh_token: str) -> "CredentialSet":
        """Return a copy with new tokens for one meter, everything else unchanged.

        Raises:
            KeyError: If no electricity account has this meter identifier
        """
        if self.electricity_account(meter_id) is None:
            raise KeyError(meter_id)

        electricity = tuple(
            replace(account, access_token=access_token, refresh_token=refresh_token)
            if account.meter_id == meter_id else account
            for account in self.electricity
        )
        return replace(self, electricity=electricity)


def credential_set_from_dict(raw: dict) -> CredentialSet:
    """Build a CredentialSet from the secrets file structure.

    Raises:
        ConfigError: If an entry is missing required keys
    """
    if not isinstance(raw, dict):
        raise ConfigError("Secrets file must contain a JSON object")

    try:
        electricity = tuple(
            ElectricityAccount(
                access_token=entry["accessToken"],
                refresh_token=entry["refreshToken"],
                meter_id=str(entry["PRM"]),
                load_curve_enabled=bool(entry.get("isLoadCurve", False)),
                off_peak_intervals=tuple(parse_off_peak_intervals(entry.get("hc"))),
            )
            for entry in raw.get("linky") or []
        )
        gas = tuple(
            GasAccount(
                username=entry["username"],
                password=entry["password"],
                meter_id=str(entry["PCE"]),
            )
            for entry in raw.get("gazpar") or []
        )
    except (KeyError, TypeError) as e:
        raise ConfigError(f"Invalid credential entry, missing {e}")

    return CredentialSet(electricity=electricity, gas=gas)


def credential_set_to_dict(credentials: CredentialSet) -> dict:
    """Serialize a CredentialSet to the secrets file structure."""
    return {
        "linky": [
            {
                "accessToken": account.access_token,
                "refreshToken": account.refresh_token,
                "PRM": account.meter_id,
                "isLoadCurve": account.load_curve_enabled,
                "hc": [format_off_peak_interval(i) for i in account.off_peak_intervals],
            }
            for account in credentials.electricity
        ],
        "gazpar": [
            {
                "username": account.username,
                "password": account.password,
                "PCE": account.meter_id,
            }
            for account in credentials.gas
        ],
    }


class CredentialStore:
    """Interface for loading and saving the full credential set."""

    def load(self) -> CredentialSet:
        raise NotImplementedError

    def save(self, credentials: CredentialSet) -> None:
        raise NotImplementedError


class InMemoryCredentialStore(CredentialStore):
    """Credential store kept in memory, mainly for tests."""

    def __init__(self, credentials: Optional[CredentialSet] = None):
        self.credentials = credentials if credentials is not None else CredentialSet()
        self.save_count = 0

    def load(self) -> CredentialSet:
        return self.credentials

    def save(self, credentials: CredentialSet) -> None:
        self.credentials = credentials
        self.save_count += 1


class JsonCredentialStore(CredentialStore):
    """Credential store backed by the JSON secrets file.

    Attributes:
        path: Path to the secrets file
    """

    def __init__(self, path: str):
        self.path = path

    def load(self) -> CredentialSet:
        """Read the secrets file.

        Raises:
            PersistenceError: If the file cannot be read or decoded
            ConfigError: If the content is not a valid credential set
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Could not read secrets file {self.path}: {e}")

        credentials = credential_set_from_dict(raw)
        logger.info(f"Loaded {len(credentials.electricity)} electricity and "
                    f"{len(credentials.gas)} gas accounts from {self.path}")
        return credentials

    def save(self, credentials: CredentialSet) -> None:
        """Rewrite the secrets file atomically.

        The content goes to a temporary file in the same directory which
        replaces the secrets file once flushed to disk.

        Raises:
            PersistenceError: If the file cannot be written
        """
        directory = os.path.dirname(os.path.abspath(self.path))
        tmp_path = None

        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=directory,
                prefix=".secrets-",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_path = f.name
                json.dump(credential_set_to_dict(credentials), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise PersistenceError(f"Could not write secrets file {self.path}: {e}")

        logger.debug(f"Secrets file {self.path} updated")


class CredentialRefreshHandler:
    """Single writer applying token rotations to the credential store.

    The in-memory credential set is only replaced once the store accepted
    the new set, so a failed write leaves the previous tokens in use.
    """

    def __init__(self, store: CredentialStore, credentials: Optional[CredentialSet] = None):
        self.store = store
        self._credentials = credentials if credentials is not None else store.load()
        self._lock = threading.Lock()

    @property
    def credentials(self) -> CredentialSet:
        return self._credentials

    def on_refresh(self, meter_id: str, access_token: str, refresh_token: str) -> bool:
        """Token refresh callback for the Enedis session."""
        return self.apply(CredentialUpdated(meter_id, access_token, refresh_token))

    def apply(self, event: CredentialUpdated) -> bool:
        """Persist rotated tokens for one meter.

        Returns:
            True if the new tokens were stored
        """
        if not event.access_token or not event.refresh_token:
            logger.info(f"PRM {event.meter_id}: token refresh without new tokens, keeping stored credentials")
            return False

        with self._lock:
            try:
                updated = self._credentials.with_electricity_tokens(
                    event.meter_id, event.access_token, event.refresh_token
                )
            except KeyError:
                logger.warning(f"PRM {event.meter_id}: token refresh for unknown meter ignored")
                return False

            try:
                self.store.save(updated)
            except PersistenceError as e:
                logger.error(f"PRM {event.meter_id}: could not persist refreshed tokens: {e}")
                return False

            self._credentials = updated

        logger.info(f"PRM {event.meter_id}: refreshed tokens saved")
        return True
