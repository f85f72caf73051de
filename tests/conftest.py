from datetime import date, datetime, time

import pytest

from conso_exporter.credentials import CredentialRefreshHandler, CredentialSet, InMemoryCredentialStore
from conso_exporter.errors import PersistenceError, ProviderFetchError
from conso_exporter.models import (
    DailyReading,
    ElectricityAccount,
    GasAccount,
    GasReading,
    LoadCurveReading,
    OffPeakInterval,
)

TODAY = date(2024, 1, 21)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, cookies=None):
        self.status_code = status_code
        self._payload = payload
        self.cookies = cookies or {}
        self.text = str(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON")
        return self._payload


class FakeHTTP:
    """Replays queued responses; an exception instance in the queue is raised."""

    def __init__(self, get=(), post=()):
        self.headers = {}
        self._get = list(get)
        self._post = list(post)
        self.get_calls = []
        self.post_calls = []

    @staticmethod
    def _next(queue):
        response = queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        self.get_calls.append((url, kwargs))
        return self._next(self._get)

    def post(self, url, **kwargs):
        self.post_calls.append((url, kwargs))
        return self._next(self._post)


class FakeLinkySession:
    """Stands in for LinkySession, serving canned readings."""

    def __init__(self, account, on_token_refresh, failing_chunks=(), fail_daily=False):
        self.account = account
        self.on_token_refresh = on_token_refresh
        self.failing_chunks = set(failing_chunks)
        self.fail_daily = fail_daily
        self.load_curve_calls = []

    def get_daily_consumption(self, start, end):
        if self.fail_daily:
            raise ProviderFetchError("daily consumption unavailable")
        return [DailyReading(date=date(2024, 1, 10), value=5000)]

    def get_max_power(self, start, end):
        return [DailyReading(date=date(2024, 1, 10), value=6200)]

    def get_load_curve(self, start, end):
        self.load_curve_calls.append((start, end))
        if start in self.failing_chunks:
            raise ProviderFetchError(f"load curve unavailable from {start}")
        return [
            LoadCurveReading(timestamp=datetime.combine(start, time(3, 0)), value=800),
            LoadCurveReading(timestamp=datetime.combine(start, time(12, 30)), value=2400),
        ]


class FakeGRDFClient:
    """Stands in for GRDFClient."""

    def __init__(self, readings):
        self.readings = readings
        self.logins = []

    def login(self, username, password):
        self.logins.append(username)
        return "token"

    def get_consumption(self, token, meter_ids, start, end):
        return {meter_id: list(self.readings.get(meter_id, [])) for meter_id in meter_ids if meter_id in self.readings}


class FakeWriter:
    """Collects written batches instead of talking to InfluxDB."""

    def __init__(self, fail=False):
        self.fail = fail
        self.batches = []

    def write_points(self, points):
        if self.fail:
            raise PersistenceError("InfluxDB unavailable")
        self.batches.append(list(points))
        return len(points)


class FailingStore(InMemoryCredentialStore):
    def save(self, credentials):
        raise PersistenceError("disk full")


@pytest.fixture
def off_peak():
    return (OffPeakInterval(time(22, 0), time(6, 0)),)


@pytest.fixture
def linky_account(off_peak):
    return ElectricityAccount(
        access_token="at-1",
        refresh_token="rt-1",
        meter_id="A",
        load_curve_enabled=True,
        off_peak_intervals=off_peak,
    )


@pytest.fixture
def other_linky_account():
    return ElectricityAccount(access_token="at-2", refresh_token="rt-2", meter_id="B")


@pytest.fixture
def gazpar_account():
    return GasAccount(username="user@example.com", password="secret", meter_id="GI000001")


@pytest.fixture
def credential_set(linky_account, other_linky_account, gazpar_account):
    return CredentialSet(
        electricity=(linky_account, other_linky_account),
        gas=(gazpar_account,),
    )


@pytest.fixture
def memory_store(credential_set):
    return InMemoryCredentialStore(credential_set)


@pytest.fixture
def refresh_handler(memory_store):
    return CredentialRefreshHandler(memory_store)


@pytest.fixture
def gas_readings():
    return [
        GasReading(gas_day=date(2024, 1, 10), energy=45.0, conversion_coefficient=11.25),
        GasReading(gas_day=date(2024, 1, 11), energy=None, conversion_coefficient=11.25),
        GasReading(gas_day=date(2024, 1, 12), energy=38.7, conversion_coefficient=11.3),
    ]


@pytest.fixture
def session_factory():
    """Returns (factory, sessions) where sessions records every session built."""
    sessions = []

    def factory(account, on_token_refresh):
        session = FakeLinkySession(account, on_token_refresh)
        sessions.append(session)
        return session

    return factory, sessions


@pytest.fixture
def gas_client(gas_readings):
    return FakeGRDFClient({"GI000001": gas_readings})


@pytest.fixture
def fake_writer():
    return FakeWriter()
