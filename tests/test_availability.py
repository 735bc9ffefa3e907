"""
Availability rules: overlap, working hours, rental length and the gap between bookings.
"""

from datetime import datetime, timedelta

import pytest

from config import Config
from availability import (
    overlaps, diff_minutes, is_in_daily_window, is_blocking_booking, resolve_rental_settings,
    buffered_range, violates_gap, check_rental_window, group_cars_by_buffer, filter_available_cars
)
from utils import parse_datetime


def at(day, hour, minute=0):
    return datetime(2030, 6, day, hour, minute)


def booking(start, end, status="confirmed", mark="booking", car_id="car-1"):
    return {"car_id": car_id, "start_at": start.isoformat(), "end_at": end.isoformat(), "status": status, "mark": mark}


def test_overlap_is_symmetric():
    points = [at(1, h) for h in range(0, 24, 3)]
    for a_start in points:
        for a_end in points:
            if a_end <= a_start:
                continue
            for b_start in points:
                for b_end in points:
                    if b_end <= b_start:
                        continue
                    assert overlaps(a_start, a_end, b_start, b_end) == overlaps(b_start, b_end, a_start, a_end)


def test_touching_intervals_do_not_overlap():
    assert not overlaps(at(1, 10), at(1, 12), at(1, 12), at(1, 14))
    assert overlaps(at(1, 10), at(1, 12, 1), at(1, 12), at(1, 14))


def test_diff_minutes_floors():
    assert diff_minutes(at(1, 10), at(1, 10, 59) + timedelta(seconds=59)) == 59


@pytest.mark.parametrize("dt, inclusive, expected", [
    (at(1, 9), False, True),
    (at(1, 8, 59), False, False),
    (at(1, 18), False, False),
    (at(1, 18), True, True),
    (at(1, 17, 59), False, True),
])
def test_daily_window(dt, inclusive, expected):
    assert is_in_daily_window(dt, 540, 1080, inclusive_end=inclusive) is expected


@pytest.mark.parametrize("dt, inclusive, expected", [
    (at(1, 23), False, True),
    (at(1, 3), False, True),
    (at(1, 6), False, False),
    (at(1, 6), True, True),
    (at(1, 12), False, False),
    (at(1, 22), False, True),
])
def test_overnight_window_wraps_midnight(dt, inclusive, expected):
    assert is_in_daily_window(dt, 1320, 360, inclusive_end=inclusive) is expected


def test_missing_or_equal_bounds_mean_always_open():
    assert is_in_daily_window(at(1, 3), None, 1080)
    assert is_in_daily_window(at(1, 3), 600, 600)


def test_blocking_bookings():
    assert is_blocking_booking({"mark": "block", "status": "canceledHost"})
    assert is_blocking_booking({"mark": "booking", "status": "OnApproval"})
    assert is_blocking_booking({"mark": "booking", "status": "rent"})
    assert not is_blocking_booking({"mark": "booking", "status": "finished"})
    assert not is_blocking_booking({"mark": "booking", "status": "canceledClient"})
    assert not is_blocking_booking({"status": "confirmed"})


def test_car_settings_override_owner_settings():
    car = {"openTime": 480, "interval_between_bookings": None}
    owner = {"open_time": 540, "close_time": 1080, "interval_between_bookings": 60}

    settings = resolve_rental_settings(car, owner)
    assert settings["open_time"] == 480
    assert settings["close_time"] == 1080
    assert settings["interval_between_bookings"] == 60
    assert settings["min_rent_period"] is None


def test_buffered_range_clamps_negative_buffer():
    assert buffered_range(at(1, 10), at(1, 12), -30) == (at(1, 10), at(1, 12))
    assert buffered_range(at(1, 10), at(1, 12), 30) == (at(1, 9, 30), at(1, 12, 30))


def test_gap_exactly_equal_is_allowed():
    existing = [booking(at(1, 8), at(1, 10))]
    assert not violates_gap(at(1, 11), at(2, 11), existing, 60)
    assert violates_gap(at(1, 10, 59), at(2, 11), existing, 60)


def test_gap_applies_after_the_rental_too():
    existing = [booking(at(3, 12), at(4, 12))]
    assert violates_gap(at(1, 10), at(3, 11, 30), existing, 60)
    assert not violates_gap(at(1, 10), at(3, 11), existing, 60)


def test_check_rental_window_order_and_messages():
    existing = [booking(at(2, 0), at(2, 12))]
    assert check_rental_window(at(1, 10), at(3, 10), {}, existing) == "Car is booked for overlapping dates"

    hours = {"open_time": 540, "close_time": 1080}
    assert check_rental_window(at(1, 8), at(3, 10), hours, []) == "Pickup time is outside of working hours"
    assert check_rental_window(at(1, 10), at(3, 19), hours, []) == "Return time is outside of working hours"
    assert check_rental_window(at(1, 10), at(3, 18), hours, []) is None


def test_check_rental_window_min_and_max():
    assert check_rental_window(at(1, 10), at(2, 9), {"min_rent_period": 1}, []) == "Minimum rental is 1 day(s)"
    assert check_rental_window(at(1, 10), at(2, 10), {"min_rent_period": 1}, []) is None
    assert check_rental_window(at(1, 10), at(3, 11), {"max_rent_period": 2}, []) == "Maximum rental is 2 day(s)"


def test_non_blocking_bookings_are_ignored():
    existing = [booking(at(2, 0), at(2, 12), status="canceledHost")]
    assert check_rental_window(at(1, 10), at(3, 10), {}, existing) is None


def test_group_cars_by_buffer():
    cars = [
        {"id": "car-1", "owner_id": "o1"},
        {"id": "car-2", "owner_id": "o2"},
        {"id": "car-3", "owner_id": "o2", "interval_between_bookings": 30},
    ]
    settings = {"o1": {}, "o2": {"interval_between_bookings": 60}}

    assert group_cars_by_buffer(cars, settings) == {0: ["car-1"], 60: ["car-2"], 30: ["car-3"]}


def test_filter_available_cars():
    cars = [
        {"id": "car-1", "owner_id": "o1"},
        {"id": "car-2", "owner_id": "o1"},
        {"id": "car-3", "owner_id": "missing"},
        {"id": "car-4"},
    ]
    bookings = [booking(at(2, 0), at(2, 12), car_id="car-2")]

    available = filter_available_cars(cars, at(1, 10), at(3, 10), bookings, {"o1": {}})
    assert [c["id"] for c in available] == ["car-1", "car-4"]


def test_rental_length_is_real_elapsed_time_across_dst(monkeypatch):
    monkeypatch.setattr(Config, "BUSINESS_TIMEZONE", "Europe/Sofia")
    # clocks go forward on 2030-03-31, so this is 23.5 real hours
    start = parse_datetime("2030-03-30T10:00:00Z")
    end = parse_datetime("2030-03-31T09:30:00Z")

    assert diff_minutes(start, end) == 23 * 60 + 30
    assert check_rental_window(start, end, {"min_rent_period": 1}, []) == "Minimum rental is 1 day(s)"


def test_fractional_periods_are_printed_plainly():
    assert check_rental_window(at(1, 10), at(1, 20), {"min_rent_period": 1.0}, []) == "Minimum rental is 1 day(s)"
    assert check_rental_window(at(1, 10), at(1, 20), {"min_rent_period": "0.5"}, []) == "Minimum rental is 0.5 day(s)"
