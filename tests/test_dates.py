from datetime import datetime, timedelta

import pytest
import pytz

from dates import day_window, days_between, get_timezone, local_day, shift_months, start_of_day, window_start
from helpers import utc


def test_day_window_utc():
    window = day_window(utc(2024, 3, 15, 12, 30), pytz.utc)
    assert window.yesterday == utc(2024, 3, 14)
    assert window.today == utc(2024, 3, 15)
    assert window.tomorrow == utc(2024, 3, 16)


def test_day_window_uses_reference_timezone():
    tz = get_timezone("Asia/Kolkata")
    # 20:00 UTC is already the next day in India (UTC+5:30)
    window = day_window(utc(2024, 3, 15, 20, 0), tz)
    assert window.today == utc(2024, 3, 15, 18, 30)
    assert window.tomorrow - window.today == timedelta(days=1)


def test_day_window_across_dst_change():
    tz = get_timezone("America/New_York")
    # DST started 2024-03-10; that local day is 23 hours long
    window = day_window(utc(2024, 3, 10, 18, 0), tz)
    assert window.tomorrow - window.today == timedelta(hours=23)
    assert window.today.astimezone(tz).hour == 0


def test_naive_instants_are_utc():
    assert start_of_day(datetime(2024, 3, 15, 9), pytz.utc) == utc(2024, 3, 15)


def test_days_between_counts_calendar_days():
    assert days_between(utc(2024, 3, 14, 23, 59), utc(2024, 3, 15, 0, 1), pytz.utc) == 1
    assert days_between(utc(2024, 3, 15, 0, 1), utc(2024, 3, 15, 23, 59), pytz.utc) == 0
    assert local_day(utc(2024, 3, 15, 23, 0), get_timezone("Europe/Berlin")).day == 16


def test_shift_months_clamps_day():
    assert shift_months(utc(2024, 3, 31, 10), -1) == utc(2024, 2, 29, 10)
    assert shift_months(utc(2023, 3, 31, 10), -1) == utc(2023, 2, 28, 10)
    assert shift_months(utc(2024, 1, 15), -1) == utc(2023, 12, 15)
    assert shift_months(utc(2024, 2, 29), -12) == utc(2023, 2, 28)


def test_window_start_per_timeframe():
    now = utc(2024, 3, 31, 12)
    assert window_start("all", now) is None
    assert window_start("week", now) == utc(2024, 3, 24, 12)
    assert window_start("month", now) == utc(2024, 2, 29, 12)
    assert window_start("year", now) == utc(2023, 3, 31, 12)


def test_window_start_rejects_unknown_timeframe():
    with pytest.raises(ValueError):
        window_start("decade", utc(2024, 3, 31))


def test_unknown_timezone():
    with pytest.raises(ValueError):
        get_timezone("Mars/Olympus_Mons")
