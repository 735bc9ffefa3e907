"""
RentalHub Flask API - Main Application
Public catalog/booking endpoints and the admin/host back-office
"""

import os
import time
import logging
from datetime import datetime
from flask import Flask, request, jsonify, make_response, session
from flask_cors import CORS
from werkzeug.exceptions import BadRequest, TooManyRequests, Unauthorized

# Import our modules
from config import Config
from database import DatabaseService
from email_service import EmailService
from auth import (
    admin_required, host_required, login, logout, get_session_status, current_owner_id
)
from availability import (
    resolve_rental_settings, buffered_range, check_rental_window, group_cars_by_buffer,
    filter_available_cars, is_blocking_booking
)
from picker import (
    DateRange, disabled_intervals_from_bookings, month_day_states, select_day, commit,
    allowed_time_bounds, violates_min_max, set_start_index, set_end_index
)
from pricing import calculate_booking_price, round_money
from calendar_view import (
    calendar_window_range, days_in_range, build_calendar_rows, unavailable_days,
    first_unavailable_after, first_unavailable_before, is_cancelled
)
from booking_lifecycle import next_status
from validators import (
    validate_uuid, parse_interval, validate_booking_request, validate_admin_booking_data,
    validate_booking_update_data, validate_settings_data, validate_pricing_rule,
    validate_seasonal_rate, validate_gap_with_existing, check_booking_rules, validate_car_update,
    validate_car_extra
)
from utils import (
    get_client_ip, check_rate_limit, booking_locks, rate_limit_storage, parse_datetime,
    parse_month, to_iso, now_local, first_row, to_camel_car, driver_profile_fields,
    missing_profile_fields, upload_driver_license
)

API_VERSION = "1.0.0"

# Initialize Flask app
app = Flask(__name__)

# Configure Flask app
app.config.update(
    SECRET_KEY=Config.SECRET_KEY,
    SESSION_COOKIE_SECURE=Config.SESSION_COOKIE_SECURE,
    SESSION_COOKIE_HTTPONLY=Config.SESSION_COOKIE_HTTPONLY,
    SESSION_COOKIE_SAMESITE=Config.SESSION_COOKIE_SAMESITE,
    PERMANENT_SESSION_LIFETIME=Config.PERMANENT_SESSION_LIFETIME,
    MAX_CONTENT_LENGTH=Config.MAX_FILE_SIZE + 1024 * 1024
)

# Configure CORS
CORS(app,
     origins=Config.CORS_ORIGINS,
     supports_credentials=Config.CORS_SUPPORTS_CREDENTIALS,
     allow_headers=Config.CORS_ALLOW_HEADERS,
     methods=Config.CORS_METHODS,
     max_age=Config.CORS_MAX_AGE
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize services
try:
    Config.validate_required_config()
    db_service = DatabaseService(Config.SUPABASE_URL, Config.SUPABASE_ANON_KEY, Config.SUPABASE_SERVICE_ROLE_KEY)
    email_service = EmailService()
    logger.info("All services initialized successfully")
except Exception as e:
    logger.error(f"Failed to initialize services: {e}")
    db_service = None
    email_service = None


@app.before_request
def handle_preflight():
    """Handle CORS preflight requests"""
    if request.method == "OPTIONS":
        response = make_response()
        origin = request.headers.get('Origin')
        if origin in Config.CORS_ORIGINS:
            response.headers.add("Access-Control-Allow-Origin", origin)
            response.headers.add('Access-Control-Allow-Headers', ",".join(Config.CORS_ALLOW_HEADERS))
            response.headers.add('Access-Control-Allow-Methods', ",".join(Config.CORS_METHODS))
            response.headers.add('Access-Control-Allow-Credentials', 'true')
            response.headers.add('Access-Control-Max-Age', str(Config.CORS_MAX_AGE))
        return response


# Request helpers

def _int_arg(name: str, default: int) -> int:
    value = request.args.get(name)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise BadRequest(f"{name} must be an integer")


def _step_arg() -> int:
    step = _int_arg('step', Config.DEFAULT_MINUTE_STEP)
    if step <= 0 or 1440 % step:
        raise BadRequest("step must split a day into whole slots")
    return step


def _owner_forbidden(owner_id) -> bool:
    return session.get('role') == 'host' and str(owner_id) != str(session.get('user_id'))


def _settings_for_car(car: dict) -> dict:
    owner_id = car.get('owner_id')
    owner_settings = db_service.get_owner_settings(owner_id) if owner_id else None
    return resolve_rental_settings(car, owner_settings or {})


def _extras_by_id(car_id: str) -> dict:
    return {e['id']: e for e in db_service.get_car_extras(car_id) if not e['inactive']}


def _car_quote(car: dict, start: datetime, end: datetime, extras=None,
               delivery: str = 'car_address', mark: str = 'booking') -> dict:
    extras_by_id = _extras_by_id(car['id']) if extras else {}
    return calculate_booking_price(
        car, start, end,
        db_service.get_pricing_rules(car['id']),
        db_service.get_seasonal_rates(car['id']),
        picked_extras=extras or [],
        extras_by_id=extras_by_id,
        mark=mark,
        delivery=delivery,
        delivery_fee=car.get('delivery_fee')
    )


def _car_blocking_bookings(car_id: str, start: datetime, end: datetime, settings: dict) -> list:
    range_start, range_end = buffered_range(start, end, settings.get('interval_between_bookings'))
    return db_service.get_blocking_bookings_in_range([car_id], range_start, range_end)


def _booking_extra_rows(booking_id, picked: list, extras_by_id: dict, billable_days: int) -> list:
    rows = []
    for extra_id in picked:
        extra = extras_by_id.get(extra_id)
        if not extra:
            continue
        multiplier = billable_days if extra['price_type'] == 'per_day' else 1
        rows.append({
            'booking_id': booking_id,
            'extra_id': extra_id,
            'title': extra['title'],
            'qty': 1,
            'price': extra['price'],
            'total': round_money(extra['price'] * multiplier),
            'price_type': extra['price_type'],
        })
    return rows


def _validate_against_existing(booking: dict, start: datetime, end: datetime, settings: dict,
                               existing: list, profile: dict = None) -> None:
    """Bookings go through every rule, host blocks only need a free slot"""
    if booking.get('mark') == 'block':
        message = validate_gap_with_existing(start, end, existing, 0)
        if message:
            raise BadRequest(message)
        return
    check_booking_rules(start, end, settings, existing, profile)


def _booking_refused(profile: dict, owner_id) -> bool:
    """Globally blocked users and users the car's owner refuses to rent to"""
    if not profile:
        return False
    if profile.get('status') == 'blocked':
        return True
    return bool(owner_id) and db_service.is_user_blocked_by_host(owner_id, profile['id'])


# ADMIN API ENDPOINTS

@app.route('/admin/login', methods=['POST'])
def admin_login_endpoint():
    """Back-office login endpoint"""
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        data = request.get_json(silent=True)
        if not data or not data.get('email') or not data.get('password'):
            return jsonify({'error': 'Email and password required'}), 400

        result = login(db_service, data['email'].strip().lower(), data['password'])

        if 'error' in result:
            return jsonify(result), 401

        logger.info(f"Back-office login for {data['email']} from IP: {get_client_ip()}")
        return jsonify(result)

    except Exception as e:
        logger.error(f"Error in admin login: {e}")
        return jsonify({'error': 'Login failed'}), 500


@app.route('/admin/logout', methods=['POST'])
@host_required
def admin_logout_endpoint():
    return jsonify(logout())


@app.route('/admin/status', methods=['GET'])
@host_required
def admin_status_endpoint():
    """Get back-office session status"""
    return jsonify(get_session_status())


@app.route('/admin/bookings', methods=['GET'])
@host_required
def admin_get_bookings():
    """Get bookings with filtering options; hosts only see their own cars"""
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        filters = {
            'owner_id': current_owner_id(),
            'status': request.args.get('status'),
            'mark': request.args.get('mark'),
            'car_id': request.args.get('car_id'),
        }
        for key in ['from', 'to']:
            if request.args.get(key):
                value = parse_datetime(request.args[key])
                if value is None:
                    return jsonify({"error": f"Invalid {key} date"}), 400
                filters[key] = to_iso(value)

        filters = {k: v for k, v in filters.items() if v is not None}

        limit = min(max(_int_arg('limit', 100), 1), Config.ADMIN_MAX_PAGE_SIZE)
        offset = max(_int_arg('offset', 0), 0)

        bookings = db_service.get_bookings_filtered(filters, limit, offset)

        now = now_local()
        for booking in bookings:
            booking['next_status'] = next_status(booking, now)

        return jsonify({
            "bookings": bookings,
            "pagination": {
                "limit": limit,
                "offset": offset,
                "returned": len(bookings)
            },
            "filters": filters
        })

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error getting bookings for admin: {e}")
        return jsonify({"error": "Failed to fetch bookings"}), 500


@app.route('/admin/bookings', methods=['POST'])
@host_required
def admin_create_booking():
    """Create a booking or a host block after running the booking rules"""
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "No data provided"}), 400

        validated = validate_admin_booking_data(data)
        car_id = validated['car_id']

        car = db_service.get_car_by_id(car_id)
        if not car:
            return jsonify({"error": "Car not found"}), 404
        if _owner_forbidden(car.get('owner_id')):
            return jsonify({"error": "Insufficient permissions"}), 403

        settings = _settings_for_car(car)
        existing = [b for b in db_service.get_bookings_by_car(car_id) if is_blocking_booking(b)]
        profile = None
        if validated['mark'] == 'booking' and validated['user_id']:
            profile = db_service.get_profile(validated['user_id'])
            if _booking_refused(profile, car.get('owner_id')):
                return jsonify({"error": "This user is blocked"}), 403

        _validate_against_existing(validated, validated['start'], validated['end'], settings, existing, profile)

        extras_by_id = _extras_by_id(car_id) if validated['extras'] else {}
        price = calculate_booking_price(
            car, validated['start'], validated['end'],
            db_service.get_pricing_rules(car_id),
            db_service.get_seasonal_rates(car_id),
            picked_extras=validated['extras'],
            extras_by_id=extras_by_id,
            mark=validated['mark'],
            delivery=validated['delivery_type'],
            delivery_fee=validated['delivery_fee']
        )

        is_booking = validated['mark'] == 'booking'
        booking = db_service.create_booking({
            'car_id': car_id,
            'user_id': validated['user_id'],
            'start_at': to_iso(validated['start']),
            'end_at': to_iso(validated['end']),
            'mark': validated['mark'],
            'status': validated['status'],
            'price_per_day': price['base_daily_price'] if is_booking else 0,
            'price_total': price['price_total'] if is_booking else 0,
            'deposit': float(car.get('deposit') or 0) if is_booking else 0,
            'currency': settings.get('currency') or car.get('currency') or Config.DEFAULT_CURRENCY,
            'delivery_type': validated['delivery_type'],
            'delivery_fee': price['delivery_fee'],
            'delivery_address': validated['delivery_address'],
        })

        if is_booking:
            db_service.insert_booking_extras(_booking_extra_rows(
                booking['id'], validated['extras'], extras_by_id, price['billable_days_for_extras']
            ))

        logger.info(f"{validated['mark'].capitalize()} {booking['id']} created for car {car_id} by {session.get('user_id')}")

        return jsonify({
            "success": True,
            "booking": booking,
            "price": price
        }), 201

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error creating admin booking: {e}")
        return jsonify({"error": "Failed to create booking"}), 500


@app.route('/admin/bookings/<booking_id>', methods=['PUT'])
@host_required
def admin_update_booking(booking_id):
    """Update booking fields; moved dates are validated again"""
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        validate_uuid(booking_id, 'booking ID')

        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "No data provided"}), 400

        update_data = validate_booking_update_data(data)

        booking = db_service.get_booking_by_id(booking_id)
        if not booking:
            return jsonify({"error": "Booking not found"}), 404
        car_ref = first_row(booking.get('cars')) or {}
        if _owner_forbidden(car_ref.get('owner_id')):
            return jsonify({"error": "Insufficient permissions"}), 403

        if 'start_at' in update_data or 'end_at' in update_data:
            start, end = parse_interval(
                update_data.get('start_at', booking['start_at']),
                update_data.get('end_at', booking['end_at'])
            )
            car = db_service.get_car_by_id(booking['car_id']) or {}
            existing = [
                b for b in db_service.get_bookings_by_car(booking['car_id'])
                if is_blocking_booking(b) and str(b['id']) != str(booking_id)
            ]
            _validate_against_existing(booking, start, end, _settings_for_car(car), existing)
            update_data['start_at'] = to_iso(start)
            update_data['end_at'] = to_iso(end)

        updated = db_service.update_booking(booking_id, update_data)

        logger.info(f"Booking {booking_id} updated: {list(update_data.keys())}")

        return jsonify({
            "success": True,
            "booking": updated,
            "message": "Booking updated successfully",
            "updated_fields": list(update_data.keys())
        })

    except BadRequest as e:
        logger.warning(f"Bad request for booking {booking_id}: {e.description}")
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error updating booking {booking_id}: {e}")
        return jsonify({"error": "Failed to update booking"}), 500


@app.route('/admin/bookings/<booking_id>', methods=['PATCH'])
@host_required
def admin_cancel_booking(booking_id):
    """Soft cancel a booking by setting status to 'canceledHost'"""
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        validate_uuid(booking_id, 'booking ID')

        booking = db_service.get_booking_by_id(booking_id)
        if not booking:
            return jsonify({"error": "Booking not found"}), 404
        car_ref = first_row(booking.get('cars')) or {}
        if _owner_forbidden(car_ref.get('owner_id')):
            return jsonify({"error": "Insufficient permissions"}), 403

        if is_cancelled(booking):
            return jsonify({"error": "Booking is already cancelled"}), 400

        cancelled = db_service.cancel_booking(booking_id)
        logger.info(f"Booking {booking_id} cancelled by {session.get('user_id')}")

        return jsonify({
            "success": True,
            "booking": cancelled,
            "message": "Booking cancelled successfully"
        })

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error cancelling booking {booking_id}: {e}")
        return jsonify({"error": "Failed to cancel booking"}), 500


@app.route('/admin/bookings/advance-status', methods=['POST'])
@admin_required
def admin_advance_booking_statuses():
    """Time-driven status changes, meant to be called by a scheduler"""
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        result = db_service.advance_booking_statuses(now_local())
        return jsonify({"ok": True, **result})

    except Exception as e:
        logger.error(f"Error advancing booking statuses: {e}")
        return jsonify({"ok": False, "error": "Failed to advance booking statuses"}), 500


@app.route('/admin/calendar', methods=['GET'])
@host_required
def admin_calendar():
    """Cars with their bookings for the month before, the month and the month after"""
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        month = parse_month(request.args.get('month'))
        if month is None:
            return jsonify({"error": "Invalid month. Use YYYY-MM"}), 400

        range_start, range_end = calendar_window_range(month)
        cars = db_service.get_calendar_window(current_owner_id(), range_start, range_end)

        return jsonify({
            "month": month.strftime('%Y-%m'),
            "range_start": to_iso(range_start),
            "range_end": to_iso(range_end),
            "days": [d.date().isoformat() for d in days_in_range(range_start, range_end)],
            "cars": build_calendar_rows(cars, range_start, range_end)
        })

    except Exception as e:
        logger.error(f"Error building admin calendar: {e}")
        return jsonify({"error": "Failed to load calendar"}), 500


@app.route('/admin/cars/<car_id>/unavailable-days', methods=['GET'])
@host_required
def admin_car_unavailable_days(car_id):
    """Days the booking editor cannot start a rental on, with the neighbours of ?start="""
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        validate_uuid(car_id, 'car ID')
        car = db_service.get_car_by_id(car_id)
        if not car:
            return jsonify({"error": "Car not found"}), 404
        if _owner_forbidden(car.get('owner_id')):
            return jsonify({"error": "Insufficient permissions"}), 403

        pool = unavailable_days(db_service.get_bookings_by_car(car_id), request.args.get('exclude'))
        result = {"days": [d.date().isoformat() for d in pool]}

        start = parse_datetime(request.args.get('start'))
        if start is not None:
            after = first_unavailable_after(pool, start)
            before = first_unavailable_before(pool, start)
            result["next_unavailable"] = after.date().isoformat() if after else None
            result["previous_unavailable"] = before.date().isoformat() if before else None

        return jsonify(result)

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error getting unavailable days for car {car_id}: {e}")
        return jsonify({"error": "Failed to load unavailable days"}), 500


@app.route('/admin/settings', methods=['GET', 'PUT'])
@host_required
def admin_settings():
    """Owner-wide rental settings"""
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        owner_id = current_owner_id()
        if not owner_id:
            return jsonify({"error": "owner_id is required"}), 400
        validate_uuid(owner_id, 'owner ID')

        if request.method == 'GET':
            return jsonify({"settings": db_service.get_owner_settings(owner_id) or {}})

        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "No data provided"}), 400

        settings = db_service.upsert_owner_settings(owner_id, validate_settings_data(data))
        logger.info(f"Settings saved for owner {owner_id}")
        return jsonify({"success": True, "settings": settings})

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error handling settings: {e}")
        return jsonify({"error": "Failed to process settings"}), 500


@app.route('/admin/cars/<car_id>/pricing-rules', methods=['GET', 'POST'])
@host_required
def admin_pricing_rules(car_id):
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        validate_uuid(car_id, 'car ID')
        car = db_service.get_car_by_id(car_id)
        if not car:
            return jsonify({"error": "Car not found"}), 404
        if _owner_forbidden(car.get('owner_id')):
            return jsonify({"error": "Insufficient permissions"}), 403

        if request.method == 'GET':
            return jsonify({"pricing_rules": db_service.get_pricing_rules(car_id)})

        rule = validate_pricing_rule(request.get_json(silent=True) or {}, car_id)
        saved = db_service.upsert_pricing_rule(rule)
        return jsonify({"success": True, "pricing_rule": saved}), 201

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error handling pricing rules for car {car_id}: {e}")
        return jsonify({"error": "Failed to process pricing rules"}), 500


@app.route('/admin/pricing-rules/<rule_id>', methods=['DELETE'])
@host_required
def admin_delete_pricing_rule(rule_id):
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        validate_uuid(rule_id, 'rule ID')
        rule = db_service.get_pricing_rule(rule_id)
        if not rule:
            return jsonify({"error": "Pricing rule not found"}), 404
        if _owner_forbidden((first_row(rule.get('cars')) or {}).get('owner_id')):
            return jsonify({"error": "Insufficient permissions"}), 403

        db_service.delete_pricing_rule(rule_id)
        return jsonify({"success": True})

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error deleting pricing rule {rule_id}: {e}")
        return jsonify({"error": "Failed to delete pricing rule"}), 500


@app.route('/admin/cars/<car_id>/seasonal-rates', methods=['GET', 'POST'])
@host_required
def admin_seasonal_rates(car_id):
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        validate_uuid(car_id, 'car ID')
        car = db_service.get_car_by_id(car_id)
        if not car:
            return jsonify({"error": "Car not found"}), 404
        if _owner_forbidden(car.get('owner_id')):
            return jsonify({"error": "Insufficient permissions"}), 403

        if request.method == 'GET':
            return jsonify({"seasonal_rates": db_service.get_seasonal_rates(car_id)})

        rate = validate_seasonal_rate(request.get_json(silent=True) or {}, car_id)
        saved = db_service.upsert_seasonal_rate(rate)
        return jsonify({"success": True, "seasonal_rate": saved}), 201

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error handling seasonal rates for car {car_id}: {e}")
        return jsonify({"error": "Failed to process seasonal rates"}), 500


@app.route('/admin/seasonal-rates/<rate_id>', methods=['DELETE'])
@host_required
def admin_delete_seasonal_rate(rate_id):
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        validate_uuid(rate_id, 'rate ID')
        rate = db_service.get_seasonal_rate(rate_id)
        if not rate:
            return jsonify({"error": "Seasonal rate not found"}), 404
        if _owner_forbidden((first_row(rate.get('cars')) or {}).get('owner_id')):
            return jsonify({"error": "Insufficient permissions"}), 403

        db_service.delete_seasonal_rate(rate_id)
        return jsonify({"success": True})

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error deleting seasonal rate {rate_id}: {e}")
        return jsonify({"error": "Failed to delete seasonal rate"}), 500


@app.route('/admin/cars/<car_id>', methods=['PUT'])
@host_required
def admin_update_car(car_id):
    """Car-level rental settings (override the owner's), prices and status"""
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        validate_uuid(car_id, 'car ID')

        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "No data provided"}), 400

        update_data = validate_car_update(data)

        car = db_service.get_car_by_id(car_id)
        if not car:
            return jsonify({"error": "Car not found"}), 404
        if _owner_forbidden(car.get('owner_id')):
            return jsonify({"error": "Insufficient permissions"}), 403

        updated = db_service.update_car(car_id, update_data)
        logger.info(f"Car {car_id} updated by {session.get('user_id')}: {sorted(update_data)}")

        return jsonify({"success": True, "car": updated})

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error updating car {car_id}: {e}")
        return jsonify({"error": "Failed to update car"}), 500


@app.route('/admin/cars/<car_id>/extras', methods=['GET'])
@host_required
def admin_car_extras(car_id):
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        validate_uuid(car_id, 'car ID')
        car = db_service.get_car_by_id(car_id)
        if not car:
            return jsonify({"error": "Car not found"}), 404
        if _owner_forbidden(car.get('owner_id')):
            return jsonify({"error": "Insufficient permissions"}), 403

        return jsonify({"extras": db_service.get_car_extras(car_id)})

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error getting extras for car {car_id}: {e}")
        return jsonify({"error": "Failed to fetch extras"}), 500


@app.route('/admin/cars/<car_id>/extras/<extra_id>', methods=['PUT'])
@host_required
def admin_set_car_extra(car_id, extra_id):
    """Offer an extra with this car at a price, or withdraw it with is_available=false"""
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        validate_uuid(car_id, 'car ID')
        validate_uuid(extra_id, 'extra ID')
        extra = validate_car_extra(request.get_json(silent=True) or {})

        car = db_service.get_car_by_id(car_id)
        if not car:
            return jsonify({"error": "Car not found"}), 404
        if _owner_forbidden(car.get('owner_id')):
            return jsonify({"error": "Insufficient permissions"}), 403

        if not extra['is_available']:
            db_service.delete_car_extra(car_id, extra_id)
            return jsonify({"success": True, "removed": True})

        saved = db_service.upsert_car_extra(car_id, extra_id, extra['price'])
        return jsonify({"success": True, "extra": saved})

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error saving extra {extra_id} for car {car_id}: {e}")
        return jsonify({"error": "Failed to save extra"}), 500


@app.route('/admin/user-blocks', methods=['GET', 'POST'])
@host_required
def admin_user_blocks():
    """Users the host will not rent to"""
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        owner_id = current_owner_id()
        if not owner_id:
            return jsonify({"error": "owner_id is required"}), 400
        validate_uuid(owner_id, 'owner ID')

        if request.method == 'GET':
            return jsonify({"user_ids": db_service.get_blocked_user_ids(owner_id)})

        data = request.get_json(silent=True) or {}
        if not data.get('user_id'):
            return jsonify({"error": "user_id is required"}), 400
        user_id = validate_uuid(data['user_id'], 'user ID')
        if user_id == owner_id:
            return jsonify({"error": "You cannot block yourself"}), 400
        if not db_service.get_profile(user_id):
            return jsonify({"error": "User not found"}), 404

        db_service.block_user_for_host(owner_id, user_id)
        logger.info(f"Owner {owner_id} blocked user {user_id}")
        return jsonify({"success": True, "user_id": user_id}), 201

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error handling user blocks: {e}")
        return jsonify({"error": "Failed to process user blocks"}), 500


@app.route('/admin/user-blocks/<user_id>', methods=['DELETE'])
@host_required
def admin_unblock_user(user_id):
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        owner_id = current_owner_id()
        if not owner_id:
            return jsonify({"error": "owner_id is required"}), 400
        validate_uuid(owner_id, 'owner ID')
        validate_uuid(user_id, 'user ID')

        db_service.unblock_user_for_host(owner_id, user_id)
        logger.info(f"Owner {owner_id} unblocked user {user_id}")
        return jsonify({"success": True})

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error unblocking user {user_id}: {e}")
        return jsonify({"error": "Failed to unblock user"}), 500


# PUBLIC API ENDPOINTS

@app.route('/', methods=['GET'])
def root():
    """Root endpoint"""
    return jsonify({
        "message": "RentalHub API",
        "version": API_VERSION,
        "status": "running",
        "timestamp": datetime.now().isoformat(),
        "admin_endpoints": "/admin/*"
    })


@app.route('/cars', methods=['GET'])
def get_cars():
    """Catalog page; with start and end only the bookable cars, each with a price quote"""
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        limit = min(max(_int_arg('limit', Config.CATALOG_PAGE_SIZE), 1), Config.ADMIN_MAX_PAGE_SIZE)
        offset = max(_int_arg('offset', 0), 0)
        start_value = request.args.get('start')
        end_value = request.args.get('end')

        cars, total = db_service.get_catalog_cars(
            limit, offset,
            country_id=request.args.get('country_id'),
            location=request.args.get('location'),
            search=request.args.get('q')
        )

        if not start_value and not end_value:
            return jsonify({
                "cars": [to_camel_car(c) for c in cars],
                "total": total,
                "limit": limit,
                "offset": offset
            })

        start, end = parse_interval(start_value, end_value)

        owner_ids = sorted({str(c['owner_id']) for c in cars if c.get('owner_id')})
        settings_by_owner = db_service.get_settings_for_owners(owner_ids)

        bookings = []
        for buffer_minutes, car_ids in group_cars_by_buffer(cars, settings_by_owner).items():
            range_start, range_end = buffered_range(start, end, buffer_minutes)
            bookings.extend(db_service.get_blocking_bookings_in_range(car_ids, range_start, range_end))

        available = filter_available_cars(cars, start, end, bookings, settings_by_owner)

        result = [{**to_camel_car(car), "quote": _car_quote(car, start, end)} for car in available]

        logger.info(f"Found {len(result)} available cars out of {len(cars)} for {start} - {end}")

        return jsonify({
            "cars": result,
            "total": total,
            "available": len(result),
            "limit": limit,
            "offset": offset
        })

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error getting cars: {e}")
        return jsonify({"error": "Failed to fetch cars"}), 500


@app.route('/cars/<car_id>', methods=['GET'])
def get_car(car_id):
    """Get specific car by ID with its active extras"""
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        validate_uuid(car_id, 'car ID')

        car = db_service.get_car_by_id(car_id)
        if not car:
            return jsonify({"error": "Car not found"}), 404

        return jsonify({**to_camel_car(car), "extras": list(_extras_by_id(car_id).values())})

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error getting car {car_id}: {e}")
        return jsonify({"error": "Failed to fetch car"}), 500


@app.route('/cars/<car_id>/quote', methods=['GET'])
def get_car_quote(car_id):
    """Availability and price breakdown for one car and interval"""
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        validate_uuid(car_id, 'car ID')
        start, end = parse_interval(request.args.get('start'), request.args.get('end'))

        car = db_service.get_car_by_id(car_id)
        if not car:
            return jsonify({"error": "Car not found"}), 404

        extras = [x.strip() for x in request.args.get('extras', '').split(',') if x.strip()]
        delivery = 'by_address' if request.args.get('delivery') == 'by_address' else 'car_address'

        settings = _settings_for_car(car)
        reason = check_rental_window(start, end, settings, _car_blocking_bookings(car_id, start, end, settings))

        return jsonify({
            "car_id": car_id,
            "start": to_iso(start),
            "end": to_iso(end),
            "is_available": reason is None,
            "reason": reason,
            "currency": settings.get('currency') or car.get('currency') or Config.DEFAULT_CURRENCY,
            "deposit": car.get('deposit'),
            **_car_quote(car, start, end, extras, delivery)
        })

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error getting quote for car {car_id}: {e}")
        return jsonify({"error": "Failed to calculate quote"}), 500


@app.route('/cars/<car_id>/calendar', methods=['GET'])
def get_car_calendar(car_id):
    """Picker month grid for a car.

    Optional ?start=&end= describe the range selected so far and ?day= the day
    just clicked, ?start_idx=&end_idx= the slider positions; the response then
    carries the new selection and slider bounds.
    """
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        validate_uuid(car_id, 'car ID')
        month = parse_month(request.args.get('month'))
        if month is None:
            return jsonify({"error": "Invalid month. Use YYYY-MM"}), 400
        step = _step_arg()

        car = db_service.get_car_by_id(car_id)
        if not car:
            return jsonify({"error": "Car not found"}), 404

        settings = _settings_for_car(car)
        open_min = settings.get('open_time')
        close_min = settings.get('close_time')
        intervals = disabled_intervals_from_bookings(
            db_service.get_bookings_by_car(car_id),
            settings.get('interval_between_bookings')
        )
        now = now_local()

        result = {
            "car_id": car_id,
            "month": month.strftime('%Y-%m'),
            "step": step,
            "open_time": open_min,
            "close_time": close_min,
            "min_rent_period": settings.get('min_rent_period'),
            "max_rent_period": settings.get('max_rent_period'),
            "disabled_intervals": [{"start": to_iso(iv.start), "end": to_iso(iv.end)} for iv in intervals],
            "days": month_day_states(month, intervals, open_min, close_min, step, now),
        }

        selection = DateRange(parse_datetime(request.args.get('start')), parse_datetime(request.args.get('end')))
        day = parse_datetime(request.args.get('day'))
        if day is not None:
            committed = selection if selection.start_at and selection.end_at else None
            selection = select_day(selection, day, intervals, open_min, close_min, step, now,
                                   committed=committed)

        if selection.start_at:
            selection = commit(selection, step, now)
            bounds = allowed_time_bounds(
                selection.start_at, selection.end_at, intervals, open_min, close_min, step
            )
            start_idx = _int_arg('start_idx', None)
            end_idx = _int_arg('end_idx', None)
            if start_idx is not None:
                selection = set_start_index(selection, start_idx, bounds, step, now)
            if end_idx is not None:
                selection = set_end_index(selection, end_idx, bounds, step, now)

            result["selection"] = {
                "start": to_iso(selection.start_at),
                "end": to_iso(selection.end_at) if selection.end_at else None,
                "violates_min_max": violates_min_max(
                    selection, settings.get('min_rent_period'), settings.get('max_rent_period')
                ),
            }
            result["time_bounds"] = bounds

        return jsonify(result)

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error building calendar for car {car_id}: {e}")
        return jsonify({"error": "Failed to load calendar"}), 500


@app.route('/api/availability', methods=['GET'])
def get_availability():
    """Blocking bookings of several cars intersecting the buffered interval"""
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        car_ids = [c.strip() for c in request.args.get('carIds', '').split(',') if c.strip()]
        if not car_ids:
            return jsonify({"error": "carIds is required"}), 400
        car_ids = [validate_uuid(c, 'car ID') for c in car_ids]

        start, end = parse_interval(request.args.get('start'), request.args.get('end'))
        buffer_minutes = max(_int_arg('buffer', 0), 0)
        range_start, range_end = buffered_range(start, end, buffer_minutes)

        bookings = db_service.get_blocking_bookings_in_range(car_ids, range_start, range_end)
        return jsonify({"bookings": bookings})

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error loading availability: {e}")
        return jsonify({"error": "Failed to load availability"}), 500


@app.route('/api/car-bookings', methods=['GET'])
def get_car_bookings():
    try:
        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        car_id = request.args.get('carId')
        if not car_id:
            return jsonify({"error": "carId is required"}), 400
        validate_uuid(car_id, 'car ID')

        return jsonify({"bookings": db_service.get_bookings_by_car(car_id)})

    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error getting bookings for car {request.args.get('carId')}: {e}")
        return jsonify({"error": "Failed to fetch bookings"}), 500


def _upsert_driver_profile(driver: dict, existing: dict = None) -> dict:
    fields = driver_profile_fields(driver)

    if existing:
        update = missing_profile_fields(existing, fields)
        if update:
            return db_service.update_profile(existing['id'], update)
        return existing

    return db_service.create_profile({
        **fields,
        'email': driver['email'],
        'is_admin': False,
        'is_host': False,
        'status': 'active',
    })


@app.route('/api/bookings', methods=['POST'])
def create_booking():
    """Submit a booking request; the host approves it later"""
    try:
        check_rate_limit()

        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "No data provided"}), 400

        validated = validate_booking_request(data)

        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        car_id = validated['car_id']

        # in-process lock; concurrent requests for one car get a retry hint
        if car_id in booking_locks:
            return jsonify({"error": "Car is being booked by another user. Please try again."}), 409

        booking_locks[car_id] = time.time()

        try:
            car = db_service.get_car_by_id(car_id)
            if not car:
                return jsonify({"error": "Car not found"}), 404
            if car.get('status') not in (None, '', 'available'):
                return jsonify({"error": "Car is not available for booking"}), 409

            start, end = validated['start'], validated['end']
            settings = _settings_for_car(car)
            reason = check_rental_window(start, end, settings, _car_blocking_bookings(car_id, start, end, settings))
            if reason:
                logger.info(f"Booking request for car {car_id} rejected: {reason}")
                return jsonify({"error": reason}), 409

            existing_profile = db_service.find_profile_by_email(validated['driver']['email'])
            if _booking_refused(existing_profile, car.get('owner_id')):
                logger.warning(f"Booking request for car {car_id} refused for blocked user {existing_profile['id']}")
                return jsonify({"error": "Booking is not possible for this user"}), 403

            profile = _upsert_driver_profile(validated['driver'], existing_profile)

            booking = db_service.create_booking({
                'user_id': profile['id'],
                'car_id': car_id,
                'start_at': to_iso(start),
                'end_at': to_iso(end),
                'price_per_day': validated['price_per_day'],
                'price_total': validated['price_total'],
                'deposit': validated['deposit'],
                'currency': validated['currency'],
                'delivery_type': validated['delivery_type'],
                'delivery_fee': validated['delivery_fee'],
                'delivery_address': validated['delivery_address'],
                'delivery_lat': validated['delivery_lat'],
                'delivery_long': validated['delivery_long'],
                'status': 'onApproval',
                'mark': 'booking',
            })

            if validated['extras']:
                try:
                    db_service.insert_booking_extras([
                        {
                            'booking_id': booking['id'],
                            'extra_id': ex['extraId'],
                            'title': ex['title'],
                            'qty': ex['qty'],
                            'price': ex['price'],
                            'total': ex['total'],
                            'price_type': ex['priceType'],
                        }
                        for ex in validated['extras']
                    ])
                except Exception as e:
                    # the booking already exists
                    logger.error(f"Failed to save extras for booking {booking['id']}: {e}")

            logger.info(f"Booking request {booking['id']} for car {car_id} by {validated['driver']['email']}")

            if email_service:
                try:
                    email_service.send_booking_request_email(booking, to_camel_car(car), validated['driver'])
                    host = db_service.get_profile(car['owner_id']) if car.get('owner_id') else None
                    if host:
                        email_service.send_host_notification_email(
                            booking, to_camel_car(car), validated['driver'], host.get('email')
                        )
                except Exception as e:
                    logger.error(f"Failed to send emails for booking {booking['id']}: {e}")

            return jsonify({
                "bookingId": booking['id'],
                "userId": profile['id']
            }), 201

        except Exception as e:
            logger.error(f"Error in booking creation: {e}")
            return jsonify({"error": "Failed to create booking"}), 500
        finally:
            booking_locks.pop(car_id, None)

    except TooManyRequests as e:
        return jsonify({"error": e.description}), 429
    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error creating booking: {e}")
        return jsonify({"error": "Internal server error"}), 500


@app.route('/api/upload-driver-license', methods=['POST'])
def upload_driver_license_endpoint():
    try:
        check_rate_limit()

        if not db_service:
            return jsonify({"error": "Database not available"}), 503

        result = upload_driver_license(request.files.get('file'), db_service)
        return jsonify(result)

    except TooManyRequests as e:
        return jsonify({"error": e.description}), 429
    except BadRequest as e:
        return jsonify({"error": e.description}), 400
    except Exception as e:
        logger.error(f"Error uploading driver license: {e}")
        return jsonify({"error": "Upload failed"}), 500


@app.route('/health', methods=['GET'])
def health_check():
    """Comprehensive health check endpoint"""
    health_data = {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "version": API_VERSION,
        "environment": os.environ.get('FLASK_ENV', 'development'),
        "business_timezone": Config.BUSINESS_TIMEZONE
    }

    status_code = 200

    if db_service:
        try:
            db_service.ping()
            health_data['database'] = 'connected'
        except Exception as e:
            health_data['database'] = f'error: {str(e)}'
            health_data['status'] = 'degraded'
            status_code = 503
    else:
        health_data['database'] = 'not_configured'
        health_data['status'] = 'degraded'
        status_code = 503

    health_data['email'] = 'configured' if email_service and email_service.service_id else 'not_configured'
    health_data['active_booking_locks'] = len(booking_locks)
    health_data['rate_limit_entries'] = len(rate_limit_storage)

    return jsonify(health_data), status_code


# Error handlers
@app.errorhandler(404)
def not_found(error):
    return jsonify({'error': 'Endpoint not found'}), 404


@app.errorhandler(500)
def internal_server_error(error):
    logger.error(f"Internal server error: {error}")
    return jsonify({'error': 'Internal server error'}), 500


@app.errorhandler(TooManyRequests)
def handle_rate_limit_exceeded(error):
    return jsonify({'error': 'Rate limit exceeded', 'retry_after': '1 hour'}), 429


@app.errorhandler(BadRequest)
def handle_bad_request(error):
    return jsonify({'error': 'Bad request', 'details': error.description}), 400


@app.errorhandler(Unauthorized)
def handle_unauthorized(error):
    return jsonify({'error': 'Unauthorized access'}), 401


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=os.environ.get('FLASK_ENV') == 'development')
