"""
Booking status transitions for RentalHub

confirmed   -> rent          once the rental has started
rent        -> finished      once the rental has ended
onApproval  -> canceledHost  when the host did not answer in time, or the start arrived
"""

from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from config import Config
from utils import parse_datetime


def approval_deadline(now: datetime) -> datetime:
    return now - timedelta(hours=Config.ON_APPROVAL_TIMEOUT_HOURS)


def next_status(booking: Dict[str, Any], now: datetime) -> Optional[str]:
    """Status the booking should move to at `now`, or None to leave it"""
    if booking.get('mark') != 'booking':
        return None

    status = booking.get('status')
    start = parse_datetime(booking.get('start_at'))
    end = parse_datetime(booking.get('end_at'))

    if status == 'confirmed' and start is not None and start <= now:
        return 'rent'

    if status == 'rent' and end is not None and end <= now:
        return 'finished'

    if status == 'onApproval':
        if start is not None and start <= now:
            return 'canceledHost'
        created = parse_datetime(booking.get('created_at'))
        if created is not None and created <= approval_deadline(now):
            return 'canceledHost'

    return None
