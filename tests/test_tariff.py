from datetime import datetime, time, timezone

import pytest

from conso_exporter.errors import ConfigError
from conso_exporter.models import OffPeakInterval
from conso_exporter.tariff import (
    classify,
    format_off_peak_interval,
    parse_off_peak_interval,
    parse_off_peak_intervals,
)

NIGHT = OffPeakInterval(time(22, 0), time(6, 0))
AFTERNOON = OffPeakInterval(time(13, 30), time(15, 30))


def test_no_intervals_is_undifferentiated():
    band = classify(datetime(2024, 1, 10, 3, 0), [])
    assert band.undifferentiated
    assert not band.off_peak and not band.peak


@pytest.mark.parametrize("hour,minute,expected", [
    (13, 30, True),   # start included
    (14, 0, True),
    (15, 29, True),
    (15, 30, False),  # end excluded
    (9, 0, False),
])
def test_same_day_interval(hour, minute, expected):
    band = classify(datetime(2024, 1, 10, hour, minute), [AFTERNOON])
    assert band.off_peak is expected
    assert band.peak is not expected


@pytest.mark.parametrize("hour,minute,expected", [
    (22, 0, True),
    (23, 30, True),
    (0, 0, True),
    (5, 59, True),
    (6, 0, False),
    (21, 59, False),
    (12, 0, False),
])
def test_interval_wrapping_midnight(hour, minute, expected):
    band = classify(datetime(2024, 1, 10, hour, minute), [NIGHT])
    assert band.off_peak is expected


def test_any_matching_interval_is_off_peak():
    assert classify(datetime(2024, 1, 10, 14, 0), [NIGHT, AFTERNOON]).off_peak
    assert classify(datetime(2024, 1, 10, 2, 0), [NIGHT, AFTERNOON]).off_peak
    assert classify(datetime(2024, 1, 10, 18, 0), [NIGHT, AFTERNOON]).peak


def test_end_of_day_interval():
    evening = OffPeakInterval(time(20, 0), None)
    assert classify(datetime(2024, 1, 10, 23, 59), [evening]).off_peak
    assert classify(datetime(2024, 1, 10, 0, 0), [evening]).peak


def test_aware_timestamps_use_civil_time():
    # 21:30 UTC is 22:30 in Paris during winter
    moment = datetime(2024, 1, 10, 21, 30, tzinfo=timezone.utc)
    assert classify(moment, [NIGHT]).off_peak
    assert classify(moment, [NIGHT], tz_name="UTC").peak


@pytest.mark.parametrize("intervals", [[], [NIGHT], [AFTERNOON], [NIGHT, AFTERNOON]])
def test_exactly_one_tag_is_set(intervals):
    for hour in range(24):
        for minute in (0, 30):
            tags = classify(datetime(2024, 3, 31, hour, minute), intervals).as_tags()
            assert sorted(tags) == ["offPeak", "peak", "undifferentiated"]
            assert list(tags.values()).count("1") == 1
            assert set(tags.values()) <= {"0", "1"}


def test_parse_string_form():
    interval = parse_off_peak_interval({"start": "22:00", "end": "06:00"})
    assert interval == NIGHT
    assert interval.wraps_midnight


def test_parse_nested_form():
    interval = parse_off_peak_interval({
        "start": {"hours": "13", "minutes": "30"},
        "end": {"hours": "15", "minutes": "30"},
    })
    assert interval == AFTERNOON
    assert not interval.wraps_midnight


def test_parse_end_of_day():
    interval = parse_off_peak_interval({"start": "20:00", "end": "24:00"})
    assert interval.end is None
    assert format_off_peak_interval(interval) == {"start": "20:00", "end": "24:00"}


@pytest.mark.parametrize("raw", [
    {"start": "22:00"},
    {"start": "25:00", "end": "06:00"},
    {"start": "aa:bb", "end": "06:00"},
    {"start": "24:00", "end": "06:00"},
    {"start": "08:00", "end": "08:00"},
    "22:00-06:00",
])
def test_parse_rejects_invalid_intervals(raw):
    with pytest.raises(ConfigError):
        parse_off_peak_interval(raw)


def test_parse_missing_intervals():
    assert parse_off_peak_intervals(None) == []
    assert parse_off_peak_intervals([]) == []
