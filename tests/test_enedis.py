from datetime import date, datetime

import pytest
import requests

from conftest import FakeHTTP, FakeResponse
from conso_exporter.enedis import LinkySession
from conso_exporter.errors import ProviderAuthError, ProviderFetchError

START = date(2024, 1, 8)
END = date(2024, 1, 15)


def readings(*items):
    return {"meter_reading": {"usage_point_id": "A", "interval_reading": list(items)}}


def make_session(http, **kwargs):
    session = LinkySession("at-1", "rt-1", "A", http=http, timeout=5, **kwargs)
    session.RETRY_DELAY = 0
    return session


def test_daily_consumption():
    http = FakeHTTP(get=[FakeResponse(payload=readings({"value": "5000", "date": "2024-01-10"}))])
    result = make_session(http).get_daily_consumption(START, END)

    assert [(r.date, r.value) for r in result] == [(date(2024, 1, 10), 5000.0)]
    url, kwargs = http.get_calls[0]
    assert url.endswith("/metering_data_dc/v5/daily_consumption")
    assert kwargs["params"] == {"usage_point_id": "A", "start": "2024-01-08", "end": "2024-01-15"}
    assert kwargs["headers"] == {"Authorization": "Bearer at-1"}
    assert kwargs["timeout"] == 5


def test_max_power_keeps_the_day():
    http = FakeHTTP(get=[FakeResponse(payload=readings({"value": "6200", "date": "2024-01-10 19:42:11"}))])
    result = make_session(http).get_max_power(START, END)

    assert result[0].date == date(2024, 1, 10)
    assert http.get_calls[0][0].endswith("/metering_data_dcmp/v5/daily_consumption_max_power")


def test_load_curve_timestamps_stay_naive():
    http = FakeHTTP(get=[FakeResponse(payload=readings(
        {"value": "800", "date": "2024-01-10 00:30:00"},
        {"value": "760", "date": "2024-01-10 01:00:00"},
    ))])
    result = make_session(http).get_load_curve(START, END)

    assert [r.timestamp for r in result] == [datetime(2024, 1, 10, 0, 30), datetime(2024, 1, 10, 1, 0)]
    assert result[0].timestamp.tzinfo is None


def test_expired_token_is_refreshed_and_reported():
    refreshed = []
    http = FakeHTTP(
        get=[FakeResponse(401), FakeResponse(payload=readings())],
        post=[FakeResponse(payload={"access_token": "at-2", "refresh_token": "rt-2"})],
    )
    session = make_session(http, on_token_refresh=lambda at, rt: refreshed.append((at, rt)))

    assert session.get_daily_consumption(START, END) == []
    assert refreshed == [("at-2", "rt-2")]
    assert session.access_token == "at-2"
    assert http.post_calls[0][1]["data"] == {"grant_type": "refresh_token", "refresh_token": "rt-1"}
    assert http.get_calls[1][1]["headers"] == {"Authorization": "Bearer at-2"}


def test_refresh_without_new_tokens_keeps_current_ones():
    refreshed = []
    http = FakeHTTP(
        get=[FakeResponse(403), FakeResponse(payload=readings())],
        post=[FakeResponse(payload={})],
    )
    session = make_session(http, on_token_refresh=lambda at, rt: refreshed.append((at, rt)))
    session.get_daily_consumption(START, END)

    assert refreshed == [("", "")]
    assert session.access_token == "at-1"


def test_refresh_rotating_only_access_token_reports_current_pair():
    refreshed = []
    http = FakeHTTP(
        get=[FakeResponse(401), FakeResponse(payload=readings())],
        post=[FakeResponse(payload={"access_token": "at-2"})],
    )
    session = make_session(http, on_token_refresh=lambda at, rt: refreshed.append((at, rt)))
    session.get_daily_consumption(START, END)

    assert refreshed == [("at-2", "rt-1")]
    assert session.refresh_token == "rt-1"


def test_rejected_after_refresh():
    http = FakeHTTP(
        get=[FakeResponse(401), FakeResponse(401)],
        post=[FakeResponse(payload={"access_token": "at-2", "refresh_token": "rt-2"})],
    )
    with pytest.raises(ProviderAuthError):
        make_session(http).get_daily_consumption(START, END)


def test_refresh_rejected():
    http = FakeHTTP(get=[FakeResponse(401)], post=[FakeResponse(400, payload={"error": "invalid_grant"})])
    with pytest.raises(ProviderAuthError):
        make_session(http).get_daily_consumption(START, END)


def test_transient_errors_are_retried():
    http = FakeHTTP(get=[
        requests.ConnectionError("reset"),
        FakeResponse(503),
        FakeResponse(payload=readings({"value": "10", "date": "2024-01-09"})),
    ])
    assert len(make_session(http).get_daily_consumption(START, END)) == 1
    assert len(http.get_calls) == 3


def test_retries_exhausted():
    http = FakeHTTP(get=[requests.Timeout("slow")] * 3)
    with pytest.raises(ProviderFetchError):
        make_session(http).get_load_curve(START, END)


def test_client_error_is_not_retried():
    http = FakeHTTP(get=[FakeResponse(400, payload={"error": "ADAM-ERR0123"})])
    with pytest.raises(ProviderFetchError):
        make_session(http).get_load_curve(START, END)
    assert len(http.get_calls) == 1


def test_malformed_payload():
    http = FakeHTTP(get=[FakeResponse(payload={"unexpected": True})])
    with pytest.raises(ProviderFetchError):
        make_session(http).get_daily_consumption(START, END)


def test_malformed_value():
    http = FakeHTTP(get=[FakeResponse(payload=readings({"value": "n/a", "date": "2024-01-10"}))])
    with pytest.raises(ProviderFetchError):
        make_session(http).get_daily_consumption(START, END)
