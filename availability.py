"""
Availability rules for RentalHub
Decides whether a car can be rented for a requested interval
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List, Tuple
from config import Config
from utils import parse_datetime, elapsed_minutes

logger = logging.getLogger(__name__)

RENTAL_SETTING_FIELDS = {
    'open_time': 'openTime',
    'close_time': 'closeTime',
    'min_rent_period': 'minRentPeriod',
    'max_rent_period': 'maxRentPeriod',
    'interval_between_bookings': 'intervalBetweenBookings',
    'currency': 'currency',
    'age_renters': 'ageRenters',
    'min_driver_license': 'minDriverLicense',
}


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Strict intersection: touching ends do not overlap"""
    return a_start < b_end and b_start < a_end


def minutes_since_midnight(dt: datetime) -> int:
    return dt.hour * 60 + dt.minute


def diff_minutes(a: datetime, b: datetime) -> int:
    """Whole elapsed minutes from a to b (floored), across DST changes"""
    return elapsed_minutes(a, b)


def is_in_daily_window(dt: datetime, open_min: Optional[int], close_min: Optional[int],
                       inclusive_end: bool = False) -> bool:
    """Check a moment against the daily open/close window.

    Missing bounds, or open == close, mean the car is available around the clock.
    When close < open the window wraps past midnight.
    """
    if open_min is None or close_min is None:
        return True
    if open_min == close_min:
        return True

    t = minutes_since_midnight(dt)
    before_close = t <= close_min if inclusive_end else t < close_min

    if close_min > open_min:
        return t >= open_min and before_close
    return t >= open_min or before_close


def is_blocking_booking(booking: Dict[str, Any]) -> bool:
    """Host blocks always block; bookings block while pending approval, confirmed or in rent"""
    mark = booking.get('mark')
    if mark == 'block':
        return True
    if mark == 'booking':
        status = str(booking.get('status') or '').lower()
        return status in Config.BLOCKING_BOOKING_STATUSES
    return False


def _setting(source: Optional[Dict[str, Any]], snake: str):
    if not source:
        return None
    if source.get(snake) is not None:
        return source[snake]
    return source.get(RENTAL_SETTING_FIELDS[snake])


def resolve_rental_settings(car: Dict[str, Any], owner_settings: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Car-level values win over the owner's global settings"""
    resolved = {}
    for field in RENTAL_SETTING_FIELDS:
        value = _setting(car, field)
        if value is None:
            value = _setting(owner_settings, field)
        resolved[field] = value
    return resolved


def buffered_range(start: datetime, end: datetime, buffer_minutes) -> Tuple[datetime, datetime]:
    buf = timedelta(minutes=max(0, int(buffer_minutes or 0)))
    return start - buf, end + buf


def _booking_bounds(booking: Dict[str, Any]) -> Tuple[Optional[datetime], Optional[datetime]]:
    return parse_datetime(booking.get('start_at')), parse_datetime(booking.get('end_at'))


def violates_gap(start: datetime, end: datetime, bookings: List[Dict[str, Any]], gap_minutes: int) -> bool:
    """True when a neighbouring booking sits closer than gap_minutes to the interval"""
    if not gap_minutes or gap_minutes <= 0:
        return False

    for booking in bookings:
        b_start, b_end = _booking_bounds(booking)
        if b_start is None or b_end is None:
            continue
        if b_end <= start and diff_minutes(b_end, start) < gap_minutes:
            return True
        if end <= b_start and diff_minutes(end, b_start) < gap_minutes:
            return True
    return False


def check_rental_window(start: datetime, end: datetime, settings: Dict[str, Any],
                        bookings: List[Dict[str, Any]]) -> Optional[str]:
    """Return None when the car is bookable for [start, end), otherwise the reason.

    `bookings` are the car's rows; non-blocking ones are ignored here.
    """
    blocking = [b for b in bookings if is_blocking_booking(b)]

    for booking in blocking:
        b_start, b_end = _booking_bounds(booking)
        if b_start is None or b_end is None:
            continue
        if overlaps(start, end, b_start, b_end):
            return "Car is booked for overlapping dates"

    open_time = settings.get('open_time')
    close_time = settings.get('close_time')
    if not is_in_daily_window(start, open_time, close_time, inclusive_end=False):
        return "Pickup time is outside of working hours"
    if not is_in_daily_window(end, open_time, close_time, inclusive_end=True):
        return "Return time is outside of working hours"

    duration = diff_minutes(start, end)

    min_rent = settings.get('min_rent_period')
    if min_rent and float(min_rent) > 0 and duration < float(min_rent) * 1440:
        return f"Minimum rental is {float(min_rent):g} day(s)"

    max_rent = settings.get('max_rent_period')
    if max_rent and float(max_rent) > 0 and duration > float(max_rent) * 1440:
        return f"Maximum rental is {float(max_rent):g} day(s)"

    gap = int(settings.get('interval_between_bookings') or 0)
    if violates_gap(start, end, blocking, gap):
        return f"At least {gap} minutes are required between bookings"

    return None


def group_bookings_by_car(bookings: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    by_car = defaultdict(list)
    for booking in bookings:
        if is_blocking_booking(booking):
            by_car[str(booking.get('car_id'))].append(booking)
    return by_car


def group_cars_by_buffer(cars: List[Dict[str, Any]],
                         settings_by_owner: Dict[str, Dict[str, Any]]) -> Dict[int, List[str]]:
    """Bucket car ids by their effective inter-booking buffer so each bucket needs one range query"""
    groups = defaultdict(list)
    for car in cars:
        owner_id = car.get('owner_id') or car.get('ownerId')
        owner_settings = settings_by_owner.get(str(owner_id)) if owner_id else None
        settings = resolve_rental_settings(car, owner_settings)
        buffer_minutes = max(0, int(settings.get('interval_between_bookings') or 0))
        groups[buffer_minutes].append(str(car['id']))
    return dict(groups)


def filter_available_cars(cars: List[Dict[str, Any]], start: datetime, end: datetime,
                          bookings: List[Dict[str, Any]],
                          settings_by_owner: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep the cars bookable for [start, end) given their bookings and rental settings"""
    by_car = group_bookings_by_car(bookings)
    available = []

    for car in cars:
        owner_id = car.get('owner_id') or car.get('ownerId')
        owner_settings = None
        if owner_id:
            owner_settings = settings_by_owner.get(str(owner_id))
            if owner_settings is None:
                logger.debug(f"Skipping car {car.get('id')}: settings for owner {owner_id} not loaded")
                continue

        settings = resolve_rental_settings(car, owner_settings)
        reason = check_rental_window(start, end, settings, by_car.get(str(car['id']), []))
        if reason:
            logger.debug(f"Car {car.get('id')} unavailable: {reason}")
            continue

        available.append(car)

    return available
