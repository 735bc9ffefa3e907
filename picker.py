"""
Rental date-time picker rules for RentalHub
Per-day free-window detection, slider bounds and two-click range selection.

All datetimes are naive wall-clock values in the business timezone. Every
function that depends on the current moment takes it as `now`.
"""

import math
from datetime import datetime, timedelta
from typing import NamedTuple, Optional, List, Dict, Any
from availability import is_blocking_booking, overlaps
from calendar_view import month_grid
from utils import parse_datetime, elapsed_seconds

MINUTES_PER_DAY = 1440
DEFAULT_START_HOUR = 10


class Interval(NamedTuple):
    start: datetime
    end: datetime


class DateRange(NamedTuple):
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None


def start_of_day(d: datetime) -> datetime:
    return datetime(d.year, d.month, d.day)


def end_of_day(d: datetime) -> datetime:
    return start_of_day(d).replace(hour=23, minute=59, second=59, microsecond=999000)


def is_same_day(a: datetime, b: datetime) -> bool:
    return a.date() == b.date()


def build_time_on_day(day: datetime, total_minutes: int) -> datetime:
    return start_of_day(day) + timedelta(minutes=total_minutes)


def round_up_to_step(d: datetime, step: int) -> datetime:
    t = d.replace(second=0, microsecond=0)
    over = t.minute % step
    if over:
        t += timedelta(minutes=step - over)
    return t


def disabled_intervals_from_bookings(bookings: List[Dict[str, Any]], gap_minutes: int = 0) -> List[Interval]:
    """Blocking bookings widened on both sides by the inter-booking gap"""
    gap = timedelta(minutes=max(0, int(gap_minutes or 0)))
    intervals = []
    for booking in bookings:
        if not is_blocking_booking(booking):
            continue
        start = parse_datetime(booking.get('start_at'))
        end = parse_datetime(booking.get('end_at'))
        if start is None or end is None:
            continue
        intervals.append(Interval(start - gap, end + gap))
    return intervals


def intervals_for_day(day: datetime, intervals: List[Interval]) -> List[Interval]:
    s, e = start_of_day(day), end_of_day(day)
    return [iv for iv in intervals if overlaps(s, e, iv.start, iv.end)]


def nearest_left_interval(day: datetime, intervals: List[Interval]) -> Optional[Interval]:
    """Latest interval that ends at or before the start of the day"""
    day_start = start_of_day(day)
    candidate = None
    for iv in intervals:
        if iv.end <= day_start and (candidate is None or iv.end > candidate.end):
            candidate = iv
    return candidate


def nearest_right_interval(day: datetime, intervals: List[Interval]) -> Optional[Interval]:
    """Earliest interval that starts at or after the end of the day"""
    day_end = end_of_day(day)
    candidate = None
    for iv in intervals:
        if iv.start >= day_end and (candidate is None or iv.start < candidate.start):
            candidate = iv
    return candidate


def work_bounds(day: datetime, open_min: Optional[int], close_min: Optional[int]):
    work_start = build_time_on_day(day, open_min) if open_min is not None else start_of_day(day)
    work_end = build_time_on_day(day, close_min) if close_min is not None else end_of_day(day)
    return work_start, work_end


def is_date_disabled(day: datetime, min_date: Optional[datetime] = None,
                     max_date: Optional[datetime] = None) -> bool:
    if min_date and day < start_of_day(min_date):
        return True
    if max_date and day > max_date:
        return True
    return False


def merge_intervals(intervals: List[Interval]) -> List[Interval]:
    merged = []
    for iv in sorted(intervals, key=lambda i: i.start):
        if merged and iv.start <= merged[-1].end:
            last = merged[-1]
            if iv.end > last.end:
                merged[-1] = Interval(last.start, iv.end)
        else:
            merged.append(iv)
    return merged


def is_day_fully_blocked(day: datetime, intervals: List[Interval], open_min: Optional[int],
                         close_min: Optional[int], step: int, now: datetime) -> bool:
    """True when no free window of at least `step` minutes is left inside working hours"""
    if close_min is not None and is_same_day(day, now):
        if now.hour * 60 + now.minute >= close_min:
            return True

    work_start, work_end = work_bounds(day, open_min, close_min)
    if work_end <= work_start:
        return False

    clipped = []
    for iv in intervals:
        s = max(iv.start, work_start)
        e = min(iv.end, work_end)
        if e > s:
            clipped.append(Interval(s, e))

    if not clipped:
        return False

    min_free = timedelta(minutes=step)
    cursor = work_start
    for iv in merge_intervals(clipped):
        if iv.start - cursor >= min_free:
            return False
        if iv.end > cursor:
            cursor = iv.end

    return work_end - cursor < min_free


def day_hint(kind: str, day: Optional[datetime], intervals: List[Interval],
             open_min: Optional[int], close_min: Optional[int]) -> str:
    if day is None:
        return ''

    work_start, work_end = work_bounds(day, open_min, close_min)
    same_day = intervals_for_day(day, intervals)

    if not same_day:
        window = f"from {work_start:%H:%M} to {work_end:%H:%M}"
        return f"Can be picked up {window}" if kind == 'start' else f"Can be returned {window}"

    earliest_start = min(iv.start for iv in same_day)
    latest_end = max(iv.end for iv in same_day)

    if kind == 'start':
        available_from = max(latest_end, work_start)
        if available_from >= work_end:
            return "There is no available time to start the rental on this day."
        return f"You can pick up from {available_from:%H:%M} to {work_end:%H:%M}"

    available_to = min(earliest_start, work_end)
    if available_to <= work_start:
        return "There is no free time to end the rental on this day."
    return f"Can be returned from {work_start:%H:%M} to {available_to:%H:%M}"


# Time slider helpers

def steps_per_day(step: int) -> int:
    return MINUTES_PER_DAY // step


def time_to_idx(d: datetime, step: int) -> int:
    return (d.hour * 60 + d.minute) // step


def time_to_idx_clamped(d: datetime, step: int) -> int:
    return min(steps_per_day(step) - 1, max(0, time_to_idx(d, step)))


def idx_to_time(base: datetime, idx: int, step: int) -> datetime:
    total = idx * step
    return base.replace(hour=total // 60, minute=total % 60)


def day_open_idx(open_min: Optional[int], step: int) -> int:
    if open_min is None:
        return 0
    return min(steps_per_day(step) - 1, max(0, open_min // step))


def day_close_idx(close_min: Optional[int], step: int) -> int:
    if close_min is None:
        return steps_per_day(step) - 1
    return min(steps_per_day(step) - 1, max(0, math.ceil(close_min / step)))


def clamp_index(idx: int, lo: int, hi: int) -> int:
    return min(max(idx, lo), hi)


def _bounds_for_day(day: datetime, intervals: List[Interval], step: int, lo: int, hi: int):
    left = nearest_left_interval(day, intervals)
    right = nearest_right_interval(day, intervals)

    if left:
        allowed_from = left.end + timedelta(minutes=1)
        if is_same_day(allowed_from, day):
            lo = max(lo, time_to_idx_clamped(allowed_from, step))

    if right:
        allowed_to = right.start - timedelta(minutes=1)
        if is_same_day(allowed_to, day):
            hi = min(hi, time_to_idx_clamped(allowed_to, step))

    return lo, hi


def allowed_time_bounds(start_at: Optional[datetime], end_at: Optional[datetime],
                        intervals: List[Interval], open_min: Optional[int],
                        close_min: Optional[int], step: int) -> Dict[str, int]:
    """Slider index bounds for the pickup and return times"""
    open_idx = day_open_idx(open_min, step)
    close_idx = day_close_idx(close_min, step)

    start_lo, start_hi = open_idx, close_idx
    end_lo, end_hi = open_idx, close_idx

    if start_at:
        start_lo, start_hi = _bounds_for_day(start_at, intervals, step, start_lo, start_hi)
    if end_at:
        end_lo, end_hi = _bounds_for_day(end_at, intervals, step, end_lo, end_hi)

    if start_lo > start_hi:
        start_lo = max(open_idx, start_hi)
    if end_lo > end_hi:
        end_lo = max(open_idx, end_hi)

    return {'start_min': start_lo, 'start_max': start_hi, 'end_min': end_lo, 'end_max': end_hi}


def set_start_index(date_range: DateRange, idx: int, bounds: Dict[str, int], step: int,
                    now: datetime) -> DateRange:
    if not date_range.start_at:
        return date_range
    nxt = idx_to_time(date_range.start_at, clamp_index(idx, bounds['start_min'], bounds['start_max']), step)
    if is_same_day(date_range.start_at, now):
        now_step = round_up_to_step(now, step)
        if nxt < now_step:
            nxt = now_step
    return date_range._replace(start_at=nxt)


def set_end_index(date_range: DateRange, idx: int, bounds: Dict[str, int], step: int,
                  now: datetime) -> DateRange:
    if not date_range.end_at:
        return date_range
    nxt = idx_to_time(date_range.end_at, clamp_index(idx, bounds['end_min'], bounds['end_max']), step)
    if is_same_day(date_range.end_at, now):
        now_step = round_up_to_step(now, step)
        if nxt < now_step:
            nxt = now_step
    return date_range._replace(end_at=nxt)


def _pick_start(day: datetime, candidate: datetime, intervals: List[Interval], open_min, close_min,
                step: int, now: datetime) -> datetime:
    work_start, work_end = work_bounds(day, open_min, close_min)
    same_day = intervals_for_day(day, intervals)
    today = is_same_day(day, now)

    if same_day:
        # partially booked day: start after its last block
        available_from = max(max(iv.end for iv in same_day), work_start)
        if today:
            available_from = max(available_from, round_up_to_step(now, step))
        candidate = round_up_to_step(available_from, step)
    else:
        if candidate < work_start:
            candidate = work_start
        if today:
            candidate = max(candidate, round_up_to_step(now, step))
        candidate = round_up_to_step(candidate, step)

    if candidate >= work_end:
        candidate = work_end - timedelta(minutes=step)
    return candidate


def _pick_end(limit_day: datetime, final_start: datetime, with_base_time, intervals: List[Interval],
              open_min, close_min, step: int, now: datetime) -> datetime:
    work_start, work_end = work_bounds(limit_day, open_min, close_min)
    same_day = intervals_for_day(limit_day, intervals)

    final_end = with_base_time(limit_day)
    if same_day:
        # return before the first block of that day
        available_to = min(min(iv.start for iv in same_day), work_end)
        if final_end > available_to:
            final_end = available_to
        if final_end < work_start:
            final_end = work_start
    else:
        if final_end < work_start:
            final_end = work_start
        if final_end > work_end:
            final_end = work_end

    if final_end < final_start:
        final_end = final_start
    if is_same_day(limit_day, now):
        final_end = max(final_end, round_up_to_step(now, step))

    return idx_to_time(limit_day, time_to_idx(final_end, step), step)


def select_day(current: DateRange, day: datetime, intervals: List[Interval],
               open_min: Optional[int], close_min: Optional[int], step: int, now: datetime,
               committed: Optional[DateRange] = None, min_date: Optional[datetime] = None,
               max_date: Optional[datetime] = None) -> DateRange:
    """Apply a calendar click to the in-progress range.

    The first click (or a click after a complete range) chooses the pickup, placed
    after any block on that day and never in the past. A following click on an
    earlier day restarts the selection; a later day sets the return, stopping before
    the first fully blocked day in between.
    """
    committed = committed or DateRange()
    day = start_of_day(day)

    if is_date_disabled(day, min_date or start_of_day(now), max_date):
        return current
    if is_day_fully_blocked(day, intervals, open_min, close_min, step, now):
        return current

    if not current.start_at or current.end_at:
        if committed.start_at:
            candidate = day.replace(hour=committed.start_at.hour, minute=committed.start_at.minute)
        elif is_same_day(day, now):
            candidate = round_up_to_step(now, step)
        elif open_min is not None:
            candidate = build_time_on_day(day, open_min)
        else:
            candidate = day.replace(hour=DEFAULT_START_HOUR)
        return DateRange(_pick_start(day, candidate, intervals, open_min, close_min, step, now), None)

    base_time = current.start_at

    def with_base_time(d: datetime) -> datetime:
        return start_of_day(d).replace(hour=base_time.hour, minute=base_time.minute)

    start_day = start_of_day(current.start_at)
    if day < start_day:
        candidate = with_base_time(day)
        return DateRange(_pick_start(day, candidate, intervals, open_min, close_min, step, now), None)

    limit_day = day
    d = start_day + timedelta(days=1)
    while d <= day:
        if is_day_fully_blocked(d, intervals, open_min, close_min, step, now):
            limit_day = d - timedelta(days=1)
            break
        d += timedelta(days=1)

    final_start = with_base_time(start_day)
    final_end = _pick_end(limit_day, final_start, with_base_time, intervals, open_min, close_min, step, now)
    return DateRange(final_start, final_end)


def rent_duration_days(date_range: DateRange) -> float:
    if not (date_range.start_at and date_range.end_at):
        return 0.0
    return elapsed_seconds(date_range.start_at, date_range.end_at) / 86400


def violates_min_max(date_range: DateRange, min_days=None, max_days=None) -> bool:
    if not (date_range.start_at and date_range.end_at):
        return False
    days = rent_duration_days(date_range)
    if min_days is not None and days < float(min_days):
        return True
    if max_days is not None and days > float(max_days):
        return True
    return False


def commit(date_range: DateRange, step: int, now: datetime) -> DateRange:
    """Final value handed back to the caller: nothing earlier than the next step from now"""
    now_step = round_up_to_step(now, step)
    start = max(date_range.start_at, now_step) if date_range.start_at else None
    end = max(date_range.end_at, now_step) if date_range.end_at else None
    return DateRange(start, end)


def month_day_states(month: datetime, intervals: List[Interval], open_min: Optional[int],
                     close_min: Optional[int], step: int, now: datetime,
                     min_date: Optional[datetime] = None,
                     max_date: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Calendar grid cells with their selectable state and pickup/return hints"""
    min_date = min_date or start_of_day(now)
    states = []
    for week in month_grid(month):
        for day in week:
            disabled = is_date_disabled(day, min_date, max_date)
            fully_blocked = is_day_fully_blocked(day, intervals, open_min, close_min, step, now)
            states.append({
                'date': day.date().isoformat(),
                'in_month': day.month == month.month,
                'disabled': disabled,
                'fully_blocked': fully_blocked,
                'start_hint': day_hint('start', day, intervals, open_min, close_min),
                'end_hint': day_hint('end', day, intervals, open_min, close_min),
            })
    return states
