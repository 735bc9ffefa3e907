"""
Validation module for RentalHub Flask API
Contains all validation functions for request payloads and booking rules
"""

import re
import uuid
import logging
from datetime import timedelta
from werkzeug.exceptions import BadRequest
from config import Config
from availability import is_in_daily_window, overlaps, diff_minutes
from utils import parse_datetime, calc_age

logger = logging.getLogger(__name__)

HONEYPOT_FIELDS = ['website', 'company', 'url', 'homepage']


def validate_email(email: str) -> bool:
    """Validate email format"""
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return re.match(pattern, email) is not None


def validate_phone(phone: str) -> bool:
    """Validate international phone format"""
    clean_phone = re.sub(r'\D', '', phone)
    return 7 <= len(clean_phone) <= 15


def validate_uuid(value, label: str = 'ID') -> str:
    try:
        uuid.UUID(str(value))
    except (ValueError, TypeError):
        raise BadRequest(f"Invalid {label} format")
    return str(value)


def parse_interval(start_value, end_value):
    """Parse an ISO pickup/return pair, rejecting empty or inverted intervals"""
    if not start_value or not end_value:
        raise BadRequest("start and end are required")
    start = parse_datetime(start_value)
    end = parse_datetime(end_value)
    if start is None or end is None or end <= start:
        raise BadRequest("Invalid date interval")
    return start, end


def _number(value, label: str, default=0.0, minimum=None):
    if value is None or value == '':
        return default
    try:
        number = float(value)
    except (ValueError, TypeError):
        raise BadRequest(f"{label} must be a valid number")
    if minimum is not None and number < minimum:
        raise BadRequest(f"{label} cannot be lower than {minimum}")
    return number


def _check_honeypot(data: dict) -> None:
    for honeypot in HONEYPOT_FIELDS:
        if data.get(honeypot):
            logger.warning(f"Honeypot field '{honeypot}' was filled")
            raise BadRequest("Invalid form submission")


# Booking rules shared by the catalog and the back-office editor.
# Each returns a message describing the first violation, or None.

def validate_open_close(start_at, end_at, open_time=None, close_time=None):
    """Pickup and return must fall inside the daily working window"""
    if open_time is None or close_time is None:
        return None
    if not is_in_daily_window(start_at, open_time, close_time, inclusive_end=False):
        return "Pickup time is outside of working hours"
    if not is_in_daily_window(end_at, open_time, close_time, inclusive_end=True):
        return "Return time is outside of working hours"
    return None


def validate_min_max_days(minutes: int, min_days=None, max_days=None):
    days = minutes / 1440
    if min_days is not None and days < float(min_days):
        return f"Minimum rental is {float(min_days):g} day(s)"
    if max_days is not None and days > float(max_days):
        return f"Maximum rental is {float(max_days):g} day(s)"
    return None


def validate_gap_with_existing(start_at, end_at, existing: list, gap_minutes: int = 0):
    """Existing bookings and blocks, widened by the gap, must not intersect the interval"""
    if end_at < start_at:
        return "End time must be after start time"

    gap = timedelta(minutes=max(0, int(gap_minutes or 0)))
    for booking in existing:
        b_start = parse_datetime(booking.get('start_at'))
        b_end = parse_datetime(booking.get('end_at'))
        if b_start is None or b_end is None:
            continue
        if overlaps(start_at, end_at, b_start - gap, b_end + gap):
            return "Selected period overlaps existing booking or violates gap rule"
    return None


def validate_customer_eligibility(age=None, license_years=None, min_age=None,
                                  min_license_years=None, has_docs=None):
    if min_age is not None and (age or 0) < min_age:
        return f"Minimum driver age is {min_age}"
    if min_license_years is not None and (license_years or 0) < min_license_years:
        return f"Minimum license years is {min_license_years}"
    if has_docs is False:
        return "Customer documents are not verified"
    return None


def validate_booking_request(data: dict) -> dict:
    """Normalize a public booking request (car, interval, prices, extras, driver)"""
    if not data.get('carId') or not data.get('start') or not data.get('end'):
        raise BadRequest("carId, start, end are required")

    _check_honeypot(data)

    car_id = validate_uuid(data['carId'], 'car ID')
    start, end = parse_interval(data['start'], data['end'])

    delivery_type = 'by_address' if data.get('deliveryType') == 'by_address' else 'car_address'

    extras = []
    for raw in data.get('extras') or []:
        if not isinstance(raw, dict) or not raw.get('extraId'):
            continue
        try:
            price = float(raw.get('price') or 0)
            total = float(raw.get('total') or 0)
        except (ValueError, TypeError):
            continue
        qty = raw.get('qty')
        extras.append({
            'extraId': str(raw['extraId']),
            'title': raw.get('title') or '',
            'qty': qty if isinstance(qty, int) and qty > 0 else 1,
            'price': price,
            'total': total,
            'priceType': raw.get('priceType'),
        })

    driver_raw = data.get('driver') or {}
    driver = {
        'name': str(driver_raw.get('name') or '').strip(),
        'dob': driver_raw.get('dob') or None,
        'licenseNumber': str(driver_raw.get('licenseNumber') or '').strip(),
        'licenseExpiry': driver_raw.get('licenseExpiry') or None,
        'phone': str(driver_raw.get('phone') or '').strip(),
        'email': str(driver_raw.get('email') or '').strip().lower(),
        'licenseFileName': driver_raw.get('licenseFileName'),
        'licenseFileUrl': driver_raw.get('licenseFileUrl'),
    }

    if not driver['email']:
        raise BadRequest("Driver email is required")
    if not validate_email(driver['email']):
        raise BadRequest("Invalid email format")
    if driver['phone'] and not validate_phone(driver['phone']):
        raise BadRequest("Invalid phone number format")
    if driver['dob'] and parse_datetime(driver['dob']) is None:
        raise BadRequest("Invalid driver date of birth")

    return {
        'car_id': car_id,
        'start': start,
        'end': end,
        'price_per_day': _number(data.get('pricePerDay'), 'pricePerDay'),
        'price_total': _number(data.get('priceTotal'), 'priceTotal'),
        'deposit': _number(data.get('deposit'), 'deposit'),
        'currency': data.get('currency') or Config.DEFAULT_CURRENCY,
        'delivery_type': delivery_type,
        'delivery_fee': _number(data.get('deliveryFee'), 'deliveryFee', minimum=0),
        'delivery_address': data.get('deliveryAddress') or None,
        'delivery_lat': data.get('deliveryLat'),
        'delivery_long': data.get('deliveryLong'),
        'extras': extras,
        'driver': driver,
    }


def validate_admin_booking_data(data: dict) -> dict:
    """Normalize a back-office booking or block"""
    for field in ['car_id', 'start_at', 'end_at']:
        if not data.get(field):
            raise BadRequest(f"Missing required field: {field}")

    mark = data.get('mark', 'booking')
    if mark not in Config.BOOKING_MARKS:
        raise BadRequest(f"Invalid mark. Allowed: {', '.join(Config.BOOKING_MARKS)}")

    start, end = parse_interval(data['start_at'], data['end_at'])

    status = data.get('status') or ('block' if mark == 'block' else 'confirmed')
    if mark == 'booking' and status not in Config.BOOKING_STATUSES:
        raise BadRequest(f"Invalid status. Allowed: {', '.join(Config.BOOKING_STATUSES)}")

    delivery_type = data.get('delivery_type', 'car_address')
    if delivery_type not in Config.DELIVERY_TYPES:
        raise BadRequest(f"Invalid delivery type. Allowed: {', '.join(Config.DELIVERY_TYPES)}")

    return {
        'car_id': validate_uuid(data['car_id'], 'car ID'),
        'user_id': validate_uuid(data['user_id'], 'user ID') if data.get('user_id') else None,
        'start': start,
        'end': end,
        'mark': mark,
        'status': status,
        'extras': [str(x) for x in data.get('extras') or []],
        'delivery_type': delivery_type,
        'delivery_fee': _number(data.get('delivery_fee'), 'delivery_fee', minimum=0),
        'delivery_address': data.get('delivery_address') or None,
    }


def check_booking_rules(start, end, settings: dict, existing: list, profile: dict = None,
                        today=None) -> None:
    """Run the working-hours, duration, gap and eligibility rules, raising on the first failure"""
    messages = [
        validate_open_close(start, end, settings.get('open_time'), settings.get('close_time')),
        validate_min_max_days(diff_minutes(start, end), settings.get('min_rent_period'),
                              settings.get('max_rent_period')),
        validate_gap_with_existing(start, end, existing, settings.get('interval_between_bookings') or 0),
    ]

    if profile is not None:
        age = profile.get('age') or calc_age(profile.get('driver_dob'), today)
        messages.append(validate_customer_eligibility(
            age=age,
            license_years=calc_age(profile.get('driver_license_issue'), today),
            min_age=settings.get('age_renters'),
            min_license_years=settings.get('min_driver_license'),
        ))

    for message in messages:
        if message:
            raise BadRequest(message)


def validate_booking_update_data(data: dict) -> dict:
    """Validate booking update data - only allow specific fields"""
    allowed_fields = ['status', 'price_total', 'deposit', 'start_at', 'end_at']
    update_data = {field: data[field] for field in allowed_fields if field in data}

    if not update_data:
        raise BadRequest("No valid fields to update")

    if 'status' in update_data and update_data['status'] not in Config.BOOKING_STATUSES:
        raise BadRequest(f"Invalid status. Allowed: {', '.join(Config.BOOKING_STATUSES)}")

    for field in ['price_total', 'deposit']:
        if field in update_data:
            update_data[field] = _number(update_data[field], field, minimum=0)

    for field in ['start_at', 'end_at']:
        if field in update_data and parse_datetime(update_data[field]) is None:
            raise BadRequest(f"Invalid {field}")

    return update_data


def validate_settings_data(data: dict) -> dict:
    """Owner-wide rental settings; times are minutes after midnight"""
    settings = {}

    for field in ['open_time', 'close_time']:
        if field in data:
            value = data[field]
            if value is not None:
                try:
                    value = int(value)
                except (ValueError, TypeError):
                    raise BadRequest(f"{field} must be minutes after midnight")
                if not 0 <= value < 1440:
                    raise BadRequest(f"{field} must be between 0 and 1439")
            settings[field] = value

    for field in ['min_rent_period', 'max_rent_period', 'interval_between_bookings',
                  'age_renters', 'min_driver_license']:
        if field in data:
            settings[field] = None if data[field] is None else _number(data[field], field, minimum=0)

    if settings.get('min_rent_period') and settings.get('max_rent_period'):
        if settings['min_rent_period'] > settings['max_rent_period']:
            raise BadRequest("min_rent_period cannot exceed max_rent_period")

    if 'currency' in data:
        currency = str(data['currency'] or '').upper()
        if not re.match(r'^[A-Z]{3}$', currency):
            raise BadRequest("currency must be a 3-letter ISO code")
        settings['currency'] = currency

    for field in ['is_instant_booking', 'is_smoking', 'is_pets', 'is_abroad']:
        if field in data:
            settings[field] = bool(data[field])

    if not settings:
        raise BadRequest("No valid fields to update")
    return settings


def validate_pricing_rule(data: dict, car_id: str) -> dict:
    if data.get('min_days') is None or data.get('discount_percent') is None:
        raise BadRequest("min_days and discount_percent are required")

    rule = {
        'car_id': car_id,
        'min_days': _number(data['min_days'], 'min_days', minimum=0),
        'discount_percent': _number(data['discount_percent'], 'discount_percent', minimum=-100),
    }
    if data.get('id'):
        rule['id'] = validate_uuid(data['id'], 'rule ID')
    return rule


def validate_seasonal_rate(data: dict, car_id: str) -> dict:
    for field in ['start_date', 'end_date', 'adjustment_percent']:
        if data.get(field) is None:
            raise BadRequest(f"Missing required field: {field}")

    start = parse_datetime(data['start_date'])
    end = parse_datetime(data['end_date'])
    if start is None or end is None:
        raise BadRequest("Invalid date format. Use YYYY-MM-DD")
    if end.date() < start.date():
        raise BadRequest("end_date cannot be before start_date")

    rate = {
        'car_id': car_id,
        'start_date': start.date().isoformat(),
        'end_date': end.date().isoformat(),
        'adjustment_percent': _number(data['adjustment_percent'], 'adjustment_percent', minimum=-100),
    }
    if data.get('id'):
        rate['id'] = validate_uuid(data['id'], 'rate ID')
    return rate


CAR_SETTING_FIELDS = [
    'open_time', 'close_time', 'min_rent_period', 'max_rent_period',
    'interval_between_bookings', 'age_renters', 'min_driver_license', 'currency',
]


def validate_car_update(data: dict) -> dict:
    """Car-level overrides of the owner settings, prices and status.

    A null setting clears the override so the owner's value applies again.
    """
    update = {}

    overrides = {field: data[field] for field in CAR_SETTING_FIELDS if field in data}
    if 'currency' in overrides and overrides['currency'] is None:
        update['currency'] = overrides.pop('currency')
    if overrides:
        update.update(validate_settings_data(overrides))

    for field in ['price', 'deposit', 'delivery_fee']:
        if field in data:
            update[field] = _number(data[field], field, minimum=0)

    if 'is_delivery' in data:
        update['is_delivery'] = bool(data['is_delivery'])

    if 'status' in data:
        if data['status'] not in Config.CAR_STATUSES:
            raise BadRequest(f"Invalid car status. Allowed: {', '.join(Config.CAR_STATUSES)}")
        update['status'] = data['status']

    if not update:
        raise BadRequest("No valid fields to update")
    return update


def validate_car_extra(data: dict) -> dict:
    is_available = bool(data.get('is_available', True))
    if is_available and data.get('price') is None:
        raise BadRequest("price is required")
    return {
        'is_available': is_available,
        'price': _number(data.get('price'), 'price', minimum=0),
    }


def allowed_file(filename: str) -> bool:
    """Check if uploaded file is allowed"""
    if not filename:
        return False
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in Config.ALLOWED_EXTENSIONS


def validate_upload_file(file) -> bool:
    """Validate an uploaded document scan"""
    if not file or not getattr(file, 'filename', ''):
        raise BadRequest("No file provided")

    if not allowed_file(file.filename):
        raise BadRequest(f"File type not allowed. Allowed types: {', '.join(sorted(Config.ALLOWED_EXTENSIONS))}")

    file.seek(0, 2)
    file_length = file.tell()
    file.seek(0)

    if file_length == 0:
        raise BadRequest("File is empty")
    if file_length > Config.MAX_FILE_SIZE:
        raise BadRequest(f"File size too large. Maximum size: {Config.MAX_FILE_SIZE / 1024 / 1024:.1f}MB")

    return True
