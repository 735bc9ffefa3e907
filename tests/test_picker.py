"""
Date-time picker rules. `now` is always passed explicitly.
"""

from datetime import datetime

from config import Config

from picker import (
    Interval, DateRange, round_up_to_step, disabled_intervals_from_bookings, intervals_for_day,
    is_day_fully_blocked, day_hint, allowed_time_bounds, select_day, commit, violates_min_max,
    rent_duration_days, month_day_states, set_start_index, set_end_index, time_to_idx, idx_to_time
)

OPEN, CLOSE, STEP = 540, 1080, 30
NOW = datetime(2030, 6, 1, 8, 0)


def at(day, hour, minute=0):
    return datetime(2030, 6, day, hour, minute)


def test_round_up_to_step():
    assert round_up_to_step(datetime(2030, 6, 1, 10, 1, 30), 30) == at(1, 10, 30)
    assert round_up_to_step(at(1, 10), 30) == at(1, 10)
    assert round_up_to_step(at(1, 23, 50), 30) == at(2, 0)


def test_disabled_intervals_are_widened_by_gap():
    bookings = [
        {"start_at": "2030-06-10T10:00:00", "end_at": "2030-06-10T12:00:00", "status": "confirmed", "mark": "booking"},
        {"start_at": "2030-06-11T10:00:00", "end_at": "2030-06-11T12:00:00", "status": "canceledHost", "mark": "booking"},
    ]
    assert disabled_intervals_from_bookings(bookings, 60) == [Interval(at(10, 9), at(10, 13))]


def test_intervals_for_day():
    intervals = [Interval(at(9, 20), at(10, 2)), Interval(at(11, 0), at(11, 5))]
    assert intervals_for_day(at(10, 0), intervals) == [intervals[0]]


def test_day_without_bookings_is_free():
    assert not is_day_fully_blocked(at(10, 0), [], OPEN, CLOSE, STEP, NOW)


def test_day_is_blocked_when_free_window_is_shorter_than_step():
    intervals = [Interval(at(10, 8), at(10, 17, 45))]
    assert is_day_fully_blocked(at(10, 0), intervals, OPEN, CLOSE, STEP, NOW)


def test_day_with_one_step_left_is_not_blocked():
    intervals = [Interval(at(10, 9), at(10, 17, 30))]
    assert not is_day_fully_blocked(at(10, 0), intervals, OPEN, CLOSE, STEP, NOW)


def test_free_gap_between_bookings_keeps_day_open():
    intervals = [Interval(at(10, 8), at(10, 12)), Interval(at(10, 13), at(10, 19))]
    assert not is_day_fully_blocked(at(10, 0), intervals, OPEN, CLOSE, STEP, NOW)


def test_today_after_closing_is_blocked():
    assert is_day_fully_blocked(at(10, 0), [], OPEN, CLOSE, STEP, at(10, 19))


def test_inverted_working_window_is_not_blocked():
    intervals = [Interval(at(10, 0), at(11, 0))]
    assert not is_day_fully_blocked(at(10, 0), intervals, CLOSE, OPEN, STEP, NOW)


def test_day_hints():
    assert day_hint("start", at(10, 0), [], OPEN, CLOSE) == "Can be picked up from 09:00 to 18:00"
    assert day_hint("end", at(10, 0), [], OPEN, CLOSE) == "Can be returned from 09:00 to 18:00"

    morning = [Interval(at(10, 8), at(10, 12))]
    assert day_hint("start", at(10, 0), morning, OPEN, CLOSE) == "You can pick up from 12:00 to 18:00"
    assert day_hint("end", at(10, 0), morning, OPEN, CLOSE) == "There is no free time to end the rental on this day."

    afternoon = [Interval(at(10, 14), at(10, 20))]
    assert day_hint("end", at(10, 0), afternoon, OPEN, CLOSE) == "Can be returned from 09:00 to 14:00"
    assert day_hint("start", at(10, 0), afternoon, OPEN, CLOSE) == \
        "There is no available time to start the rental on this day."

    assert day_hint("start", None, [], OPEN, CLOSE) == ""


def test_allowed_time_bounds_follow_working_hours():
    bounds = allowed_time_bounds(at(10, 9), at(12, 9), [], OPEN, CLOSE, STEP)
    assert bounds == {"start_min": 18, "start_max": 36, "end_min": 18, "end_max": 36}

    bounds = allowed_time_bounds(None, None, [], None, None, STEP)
    assert bounds == {"start_min": 0, "start_max": 47, "end_min": 0, "end_max": 47}


def test_start_bound_after_block_ending_at_midnight():
    # one-minute step makes the one-minute margin visible
    bounds = allowed_time_bounds(at(10, 12), None, [Interval(at(9, 20), at(10, 0))], None, None, 1)
    assert bounds["start_min"] == 1
    assert bounds["start_max"] == 1439

    earlier = Interval(at(9, 8), at(9, 22))
    assert allowed_time_bounds(at(10, 12), None, [earlier], None, None, 1)["start_min"] == 0


def test_end_bound_before_block_starting_at_end_of_day():
    right = Interval(datetime(2030, 6, 10, 23, 59, 59, 999000), at(11, 6))
    bounds = allowed_time_bounds(None, at(10, 12), [right], None, None, 1)
    assert bounds["end_min"] == 0
    assert bounds["end_max"] == 1438


def test_inverted_bounds_collapse_to_opening_index():
    bounds = allowed_time_bounds(at(10, 12), at(11, 12), [], 1080, 540, STEP)
    assert bounds == {"start_min": 36, "start_max": 18, "end_min": 36, "end_max": 18}


def test_slider_index_conversion():
    assert time_to_idx(at(10, 9, 45), STEP) == 19
    assert idx_to_time(at(10, 0), 19, STEP) == at(10, 9, 30)


def test_set_start_index_is_clamped_and_not_in_the_past():
    bounds = {"start_min": 18, "start_max": 36, "end_min": 18, "end_max": 36}
    moved = set_start_index(DateRange(at(10, 12), None), 2, bounds, STEP, NOW)
    assert moved.start_at == at(10, 9)

    moved = set_start_index(DateRange(at(10, 12), None), 20, bounds, STEP, at(10, 11, 10))
    assert moved.start_at == at(10, 11, 30)


def test_set_end_index_is_clamped_to_the_close_bound():
    bounds = {"start_min": 18, "start_max": 36, "end_min": 18, "end_max": 36}
    moved = set_end_index(DateRange(at(10, 12), at(11, 12)), 40, bounds, STEP, NOW)
    assert moved == DateRange(at(10, 12), at(11, 18))
    assert set_end_index(DateRange(at(10, 12), None), 20, bounds, STEP, NOW).end_at is None


def test_first_click_starts_at_opening_time():
    picked = select_day(DateRange(), at(10, 0), [], OPEN, CLOSE, STEP, NOW)
    assert picked == DateRange(at(10, 9), None)


def test_first_click_today_starts_after_now():
    picked = select_day(DateRange(), at(10, 0), [], OPEN, CLOSE, STEP, at(10, 10, 7))
    assert picked.start_at == at(10, 10, 30)


def test_first_click_on_partially_booked_day_starts_after_block():
    intervals = [Interval(at(10, 8), at(10, 12))]
    picked = select_day(DateRange(), at(10, 0), intervals, OPEN, CLOSE, STEP, NOW)
    assert picked.start_at == at(10, 12)


def test_second_click_later_sets_return():
    picked = select_day(DateRange(at(10, 9), None), at(12, 0), [], OPEN, CLOSE, STEP, NOW)
    assert picked == DateRange(at(10, 9), at(12, 9))


def test_click_after_complete_range_reuses_committed_pickup_time():
    committed = DateRange(at(10, 14), at(12, 14))
    picked = select_day(committed, at(20, 0), [], OPEN, CLOSE, STEP, NOW, committed=committed)
    assert picked == DateRange(at(20, 14), None)


def test_second_click_earlier_restarts():
    picked = select_day(DateRange(at(10, 9), None), at(8, 0), [], OPEN, CLOSE, STEP, NOW)
    assert picked == DateRange(at(8, 9), None)


def test_return_stops_before_fully_blocked_day():
    intervals = [Interval(at(11, 0), at(12, 0))]
    picked = select_day(DateRange(at(10, 9), None), at(13, 0), intervals, OPEN, CLOSE, STEP, NOW)
    assert picked.start_at == at(10, 9)
    assert picked.end_at.date() == at(10, 0).date()


def test_return_is_clamped_before_block_on_end_day():
    intervals = [Interval(at(12, 12), at(12, 20))]
    picked = select_day(DateRange(at(10, 14), None), at(12, 0), intervals, OPEN, CLOSE, STEP, NOW)
    assert picked.end_at == at(12, 12)


def test_clicks_on_unavailable_days_are_ignored():
    current = DateRange(at(10, 9), None)
    blocked = [Interval(at(11, 0), at(12, 0))]
    assert select_day(current, at(11, 0), blocked, OPEN, CLOSE, STEP, NOW) == current
    assert select_day(current, at(5, 0), [], OPEN, CLOSE, STEP, at(6, 8)) == current


def test_commit_moves_past_times_forward():
    committed = commit(DateRange(at(10, 9), at(12, 9)), STEP, at(10, 9, 10))
    assert committed == DateRange(at(10, 9, 30), at(12, 9))


def test_min_max_days():
    range_ = DateRange(at(10, 9), at(11, 21))
    assert rent_duration_days(range_) == 1.5
    assert violates_min_max(range_, min_days=2)
    assert not violates_min_max(range_, min_days=1, max_days=2)
    assert not violates_min_max(DateRange(at(10, 9), None), min_days=2)


def test_rent_duration_counts_real_hours_across_dst(monkeypatch):
    monkeypatch.setattr(Config, "BUSINESS_TIMEZONE", "Europe/Sofia")
    range_ = DateRange(datetime(2030, 3, 30, 12), datetime(2030, 3, 31, 12))
    assert rent_duration_days(range_) == 23 / 24
    assert violates_min_max(range_, min_days=1)


def test_month_day_states():
    intervals = [Interval(at(11, 0), at(12, 0))]
    states = month_day_states(at(1, 0), intervals, OPEN, CLOSE, STEP, at(3, 8))

    assert len(states) == 35
    assert states[0]["date"] == "2030-05-27"
    assert states[0]["in_month"] is False

    by_date = {s["date"]: s for s in states}
    assert by_date["2030-06-02"]["disabled"] is True
    assert by_date["2030-06-03"]["disabled"] is False
    assert by_date["2030-06-11"]["fully_blocked"] is True
    assert by_date["2030-06-12"]["start_hint"] == "Can be picked up from 09:00 to 18:00"
