"""
Utility functions module for RentalHub Flask API
Contains helper functions for various operations
"""

import time
import uuid
import logging
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo
from flask import request
from werkzeug.exceptions import TooManyRequests
from config import Config

logger = logging.getLogger(__name__)

# Simple rate limiting storage (in-memory, per process)
rate_limit_storage = {}

# Concurrency protection
booking_locks = {}  # Simple in-memory locks per car_id


def business_tz() -> ZoneInfo:
    return ZoneInfo(Config.BUSINESS_TIMEZONE)


def parse_datetime(value):
    """Parse an ISO timestamp into a naive wall-clock datetime in the business timezone.

    Aware values are converted to the business timezone first; naive values are
    assumed to already be local. Returns None for empty or unparseable input.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(business_tz()).replace(tzinfo=None)
    return dt


def to_iso(dt: datetime) -> str:
    """Serialize a local wall-clock datetime with the business timezone offset"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=business_tz())
    return dt.isoformat()


def now_local() -> datetime:
    return datetime.now(business_tz()).replace(tzinfo=None)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=business_tz())
    return dt.astimezone(timezone.utc)


def elapsed_seconds(start: datetime, end: datetime) -> float:
    """Real time between two local wall-clock values, daylight-saving shifts included"""
    return (_as_utc(end) - _as_utc(start)).total_seconds()


def elapsed_minutes(start: datetime, end: datetime) -> int:
    return int(elapsed_seconds(start, end) // 60)


def parse_month(value):
    """Parse 'YYYY-MM' (or any ISO date) into the first day of that month"""
    if not value:
        today = now_local()
        return datetime(today.year, today.month, 1)
    try:
        parsed = datetime.strptime(value[:7], '%Y-%m')
    except ValueError:
        return None
    return parsed


def get_client_ip() -> str:
    """Get client IP address"""
    if request.headers.get('X-Forwarded-For'):
        return request.headers.get('X-Forwarded-For').split(',')[0].strip()
    return request.remote_addr or 'unknown'


def check_rate_limit() -> None:
    """Per-IP rate limiting for public write endpoints"""
    client_ip = get_client_ip()
    current_time = time.time()

    entry = rate_limit_storage.get(client_ip)
    if entry is None or current_time > entry['reset_time']:
        entry = {'count': 0, 'reset_time': current_time + Config.RATE_LIMIT_WINDOW}
        rate_limit_storage[client_ip] = entry

    if entry['count'] >= Config.RATE_LIMIT_MAX_REQUESTS:
        logger.warning(f"Rate limit exceeded for IP: {client_ip}")
        raise TooManyRequests(
            f"Rate limit exceeded. Maximum {Config.RATE_LIMIT_MAX_REQUESTS} requests per hour per IP."
        )

    entry['count'] += 1


def first_row(value):
    """PostgREST returns embedded to-one relations either as an object or a one-item list"""
    if isinstance(value, list):
        return value[0] if value else None
    return value


def to_camel_car(raw: dict) -> dict:
    """Map a raw cars row (snake_case, embedded relations) to the API shape"""
    model = first_row(raw.get('models') or raw.get('model'))
    brand = first_row(model.get('brands')) if model else None
    location = first_row(raw.get('locations') or raw.get('location'))
    country = first_row(location.get('countries')) if location else None

    def pick(snake, camel=None, default=None):
        if raw.get(snake) is not None:
            return raw[snake]
        if camel and raw.get(camel) is not None:
            return raw[camel]
        return default

    return {
        'id': raw.get('id'),
        'vin': raw.get('vin'),
        'year': int(raw['year']) if raw.get('year') is not None else None,
        'licensePlate': pick('license_plate', 'licensePlate'),
        'fuelType': pick('fuel_type', 'fuelType'),
        'transmission': raw.get('transmission'),
        'seats': int(raw['seats']) if raw.get('seats') is not None else None,
        'bodyType': pick('body_type', 'bodyType'),
        'brand': brand.get('name') if brand else None,
        'model': model.get('name') if model else None,
        'location': location.get('name') if location else None,
        'countryId': country.get('id') if country else None,
        'country': country.get('name') if country else None,
        'address': raw.get('address') or '',
        'lat': pick('lat', 'latitude'),
        'long': pick('long', 'longitude'),
        'pickupInfo': pick('pickup_info', 'pickupInfo', ''),
        'returnInfo': pick('return_info', 'returnInfo', ''),
        'isDelivery': pick('is_delivery', 'isDelivery', False),
        'deliveryFee': pick('delivery_fee', 'deliveryFee', 0),
        'includeMileage': pick('include_mileage', 'includeMileage', 0),
        'price': raw.get('price'),
        'deposit': raw.get('deposit'),
        'currency': raw.get('currency'),
        'openTime': pick('open_time', 'openTime'),
        'closeTime': pick('close_time', 'closeTime'),
        'minRentPeriod': pick('min_rent_period', 'minRentPeriod'),
        'maxRentPeriod': pick('max_rent_period', 'maxRentPeriod'),
        'intervalBetweenBookings': pick('interval_between_bookings', 'intervalBetweenBookings'),
        'coverPhotos': pick('cover_photos', 'coverPhotos', []),
        'status': raw.get('status') or '',
        'ownerId': pick('owner_id', 'ownerId'),
    }


def calc_age(dob, today=None):
    """Full years between a date of birth and today, None if unknown"""
    born = parse_datetime(dob)
    if born is None:
        return None
    today = today or now_local()
    age = today.year - born.year
    if (today.month, today.day) < (born.month, born.day):
        age -= 1
    return age if age >= 0 else None


def driver_profile_fields(driver: dict, today=None) -> dict:
    """Profile columns taken from a booking request's driver block"""
    dob = parse_datetime(driver.get('dob'))
    expiry = parse_datetime(driver.get('licenseExpiry'))
    return {
        'full_name': driver.get('name') or None,
        'phone': driver.get('phone') or None,
        'age': calc_age(dob, today) if dob else None,
        'driver_dob': to_iso(dob) if dob else None,
        'driver_license_number': driver.get('licenseNumber') or None,
        'driver_license_expiry': to_iso(expiry) if expiry else None,
        'driver_license_file_url': driver.get('licenseFileUrl') or None,
    }


def missing_profile_fields(existing: dict, fields: dict) -> dict:
    """Only fill what the stored profile does not have yet"""
    return {k: v for k, v in fields.items() if v is not None and not existing.get(k)}


def upload_driver_license(file, db_service) -> dict:
    """Store a driver licence scan and return its bucket path"""
    from validators import validate_upload_file

    validate_upload_file(file)

    original_name = file.filename or 'file'
    ext = ''.join(ch for ch in original_name.rsplit('.', 1)[-1].lower() if ch.isalnum()) or 'bin'
    filename = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.{ext}"

    content = file.read()
    file.seek(0)

    path = db_service.upload_file(
        Config.DRIVER_LICENSE_BUCKET,
        filename,
        content,
        file.mimetype or 'application/octet-stream'
    )
    logger.info(f"Uploaded driver license {original_name} -> {path}")
    return {'path': path, 'fileName': original_name}
