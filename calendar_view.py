"""
Back-office calendar helpers for RentalHub
Month windows, per-day booking bars and day availability pools
"""

from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any, Tuple
from config import Config
from utils import parse_datetime


def _month_start(d: datetime) -> datetime:
    return datetime(d.year, d.month, 1)


def add_months(d: datetime, months: int) -> datetime:
    index = d.year * 12 + (d.month - 1) + months
    return datetime(index // 12, index % 12 + 1, 1)


def end_of_month(d: datetime) -> datetime:
    return add_months(d, 1) - timedelta(milliseconds=1)


def calendar_window_range(month: datetime) -> Tuple[datetime, datetime]:
    """The back-office loads the previous, current and next month at once"""
    start = _month_start(month)
    return add_months(start, -1), end_of_month(add_months(start, 1))


def month_grid(month: datetime) -> List[List[datetime]]:
    """Monday-first weeks covering the whole month"""
    first = _month_start(month)
    last = end_of_month(first)
    grid_start = first - timedelta(days=first.weekday())
    grid_end = datetime(last.year, last.month, last.day) + timedelta(days=6 - last.weekday())

    days = []
    d = grid_start
    while d <= grid_end:
        days.append(d)
        d += timedelta(days=1)
    return [days[i:i + 7] for i in range(0, len(days), 7)]


def days_in_range(start: datetime, end: datetime) -> List[datetime]:
    day = datetime(start.year, start.month, start.day)
    days = []
    while day <= end:
        days.append(day)
        day += timedelta(days=1)
    return days


def intersects_day(booking: Dict[str, Any], day: datetime) -> bool:
    start = parse_datetime(booking.get('start_at'))
    end = parse_datetime(booking.get('end_at'))
    if start is None or end is None:
        return False
    return start.date() <= day.date() <= end.date()


def is_cancelled(booking: Dict[str, Any]) -> bool:
    return str(booking.get('status') or '').startswith('canceled')


def is_block(booking: Dict[str, Any]) -> bool:
    return booking.get('mark') == 'block' or booking.get('status') == 'block'


def row_bars(bookings: List[Dict[str, Any]], days: List[datetime],
             range_start: datetime, range_end: datetime) -> List[Dict[str, Any]]:
    """Horizontal bars for one car row: first day index and number of days covered"""
    bars = []
    for booking in bookings:
        start = parse_datetime(booking.get('start_at'))
        end = parse_datetime(booking.get('end_at'))
        if start is None or end is None:
            continue
        if end < range_start or start > range_end:
            continue
        if not is_block(booking) and is_cancelled(booking):
            continue

        first = next((i for i, d in enumerate(days) if intersects_day(booking, d)), None)
        if first is None:
            continue
        last = first
        for i in range(first + 1, len(days)):
            if not intersects_day(booking, days[i]):
                break
            last = i

        bars.append({'booking': booking, 'left': first, 'span': last - first + 1})
    return bars


def is_busy_day(bookings: List[Dict[str, Any]], day: datetime) -> bool:
    return any(intersects_day(b, day) for b in bookings if not is_cancelled(b))


def is_partial_end(booking: Dict[str, Any], day: datetime) -> bool:
    """The booking ends on this day before 23:59, leaving the rest of it free"""
    end = parse_datetime(booking.get('end_at'))
    if end is None or end.date() != day.date():
        return False
    return not (end.hour == 23 and end.minute == 59)


def _occupies_calendar(booking: Dict[str, Any]) -> bool:
    if booking.get('mark') == 'block':
        return True
    return booking.get('mark') == 'booking' and booking.get('status') in Config.ACTIVE_CALENDAR_STATUSES


def unavailable_days(bookings: List[Dict[str, Any]], exclude_id: Optional[str] = None) -> List[datetime]:
    """Days that cannot start a new rental; partial end days stay selectable"""
    pool = []
    for booking in bookings:
        if exclude_id is not None and str(booking.get('id')) == str(exclude_id):
            continue
        if not _occupies_calendar(booking):
            continue
        start = parse_datetime(booking.get('start_at'))
        end = parse_datetime(booking.get('end_at'))
        if start is None or end is None:
            continue
        for day in days_in_range(start, end):
            if not is_partial_end(booking, day):
                pool.append(day)
    return sorted(set(pool))


def first_unavailable_after(pool: List[datetime], start: datetime) -> Optional[datetime]:
    later = [d for d in pool if d > start]
    return min(later) if later else None


def first_unavailable_before(pool: List[datetime], start: datetime) -> Optional[datetime]:
    earlier = [d for d in pool if d < start]
    return max(earlier) if earlier else None


def build_calendar_rows(cars: List[Dict[str, Any]], range_start: datetime,
                        range_end: datetime) -> List[Dict[str, Any]]:
    days = days_in_range(range_start, range_end)
    rows = []
    for car in cars:
        bookings = car.get('bookings') or []
        rows.append({
            **car,
            'bars': [
                {'booking_id': bar['booking'].get('id'), 'left': bar['left'], 'span': bar['span']}
                for bar in row_bars(bookings, days, range_start, range_end)
            ],
            'busy_days': [d.date().isoformat() for d in days if is_busy_day(bookings, d)],
        })
    return rows
