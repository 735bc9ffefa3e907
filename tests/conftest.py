"""
Shared fixtures: environment for the Flask app and an in-memory stand-in for DatabaseService.
"""

import os
import copy
from datetime import datetime

import pytest

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["BUSINESS_TIMEZONE"] = "UTC"

CAR_ID = "11111111-1111-1111-1111-111111111111"
OTHER_CAR_ID = "22222222-2222-2222-2222-222222222222"
FOREIGN_CAR_ID = "33333333-3333-3333-3333-333333333333"
OWNER_ID = "aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa"
OTHER_OWNER_ID = "bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb"
ADMIN_ID = "cccccccc-cccc-cccc-cccc-cccccccccccc"
BOOKING_ID = "dddddddd-dddd-dddd-dddd-dddddddddddd"


def make_car(car_id=CAR_ID, owner_id=OWNER_ID, **overrides):
    car = {
        "id": car_id,
        "owner_id": owner_id,
        "status": "available",
        "price": 50,
        "deposit": 300,
        "currency": "EUR",
        "delivery_fee": 20,
        "license_plate": "CA1234AB",
        "models": {"name": "Corolla", "brands": {"name": "Toyota"}},
        "locations": {"name": "Sofia", "countries": {"id": "bg", "name": "Bulgaria"}},
        "open_time": None,
        "close_time": None,
        "min_rent_period": None,
        "max_rent_period": None,
        "interval_between_bookings": None,
    }
    car.update(overrides)
    return car


def make_booking(booking_id, car_id, start_at, end_at, status="confirmed", mark="booking", **extra):
    return {
        "id": booking_id,
        "car_id": car_id,
        "start_at": start_at,
        "end_at": end_at,
        "status": status,
        "mark": mark,
        **extra,
    }


class FakeDatabaseService:
    """Implements the DatabaseService calls the routes make, backed by dicts"""

    def __init__(self):
        self.cars = {}
        self.bookings = []
        self.profiles = {}
        self.settings = {}
        self.pricing_rules = []
        self.seasonal_rates = []
        self.extras = {}
        self.passwords = {}
        self.booking_extras = []
        self.car_extra_prices = {}
        self.host_blocks = set()
        self.last_filters = None
        self.advanced_at = None
        self._next_id = 1

    def _new_id(self, prefix):
        value = f"{prefix}-{self._next_id}"
        self._next_id += 1
        return value

    def ping(self):
        return True

    # auth / profiles
    def sign_in(self, email, password):
        entry = self.passwords.get(email)
        if entry and entry[0] == password:
            return entry[1]
        return None

    def get_profile(self, user_id):
        return self.profiles.get(user_id)

    def find_profile_by_email(self, email):
        return next((p for p in self.profiles.values() if p.get("email") == email), None)

    def create_profile(self, data):
        profile = {**data, "id": self._new_id("profile")}
        self.profiles[profile["id"]] = profile
        return profile

    def update_profile(self, profile_id, data):
        self.profiles[profile_id].update(data)
        return self.profiles[profile_id]

    # cars
    def get_catalog_cars(self, limit, offset, country_id=None, location=None, search=None):
        cars = [copy.deepcopy(c) for c in self.cars.values()]
        return cars[offset:offset + limit], len(cars)

    def get_car_by_id(self, car_id):
        car = self.cars.get(car_id)
        return copy.deepcopy(car) if car else None

    def get_car_extras(self, car_id):
        return list(self.extras.get(car_id, []))

    def update_car(self, car_id, data):
        self.cars[car_id].update(data)
        return copy.deepcopy(self.cars[car_id])

    def upsert_car_extra(self, car_id, extra_id, price):
        self.car_extra_prices[(car_id, extra_id)] = price
        return {"car_id": car_id, "extra_id": extra_id, "price": price}

    def delete_car_extra(self, car_id, extra_id):
        self.car_extra_prices.pop((car_id, extra_id), None)
        return True

    # host user blocks
    def get_blocked_user_ids(self, owner_id):
        return sorted(u for o, u in self.host_blocks if o == owner_id)

    def is_user_blocked_by_host(self, owner_id, user_id):
        return (owner_id, user_id) in self.host_blocks

    def block_user_for_host(self, owner_id, user_id):
        self.host_blocks.add((owner_id, user_id))
        return {"owner_id": owner_id, "user_id": user_id}

    def unblock_user_for_host(self, owner_id, user_id):
        self.host_blocks.discard((owner_id, user_id))
        return True

    # settings
    def get_owner_settings(self, owner_id):
        return self.settings.get(owner_id)

    def get_settings_for_owners(self, owner_ids):
        return {o: self.settings.get(o, {}) for o in owner_ids}

    def upsert_owner_settings(self, owner_id, data):
        row = {**self.settings.get(owner_id, {}), **data, "owner_id": owner_id, "scope": "global"}
        self.settings[owner_id] = row
        return row

    # pricing
    def get_pricing_rules(self, car_id):
        return [r for r in self.pricing_rules if r["car_id"] == car_id]

    def get_pricing_rule(self, rule_id):
        rule = next((r for r in self.pricing_rules if r.get("id") == rule_id), None)
        if rule is None:
            return None
        return {**rule, "cars": {"owner_id": self.cars[rule["car_id"]]["owner_id"]}}

    def upsert_pricing_rule(self, rule):
        saved = {"id": self._new_id("rule"), **rule}
        self.pricing_rules.append(saved)
        return saved

    def delete_pricing_rule(self, rule_id):
        self.pricing_rules = [r for r in self.pricing_rules if r.get("id") != rule_id]
        return True

    def get_seasonal_rates(self, car_id):
        return [r for r in self.seasonal_rates if r["car_id"] == car_id]

    def get_seasonal_rate(self, rate_id):
        return next((r for r in self.seasonal_rates if r.get("id") == rate_id), None)

    def upsert_seasonal_rate(self, rate):
        saved = {"id": self._new_id("rate"), **rate}
        self.seasonal_rates.append(saved)
        return saved

    def delete_seasonal_rate(self, rate_id):
        self.seasonal_rates = [r for r in self.seasonal_rates if r.get("id") != rate_id]
        return True

    # bookings
    def get_blocking_bookings_in_range(self, car_ids, start, end):
        from availability import is_blocking_booking, overlaps
        from utils import parse_datetime

        return [
            b for b in self.bookings
            if b["car_id"] in car_ids and is_blocking_booking(b)
            and overlaps(start, end, parse_datetime(b["start_at"]), parse_datetime(b["end_at"]))
        ]

    def get_bookings_by_car(self, car_id):
        return sorted((b for b in self.bookings if b["car_id"] == car_id), key=lambda b: b["start_at"])

    def get_booking_by_id(self, booking_id):
        booking = next((b for b in self.bookings if b["id"] == booking_id), None)
        if booking is None:
            return None
        car = self.cars.get(booking["car_id"], {})
        return {**booking, "cars": {"id": booking["car_id"], "owner_id": car.get("owner_id")}}

    def get_bookings_filtered(self, filters, limit=100, offset=0):
        self.last_filters = dict(filters)
        rows = self.bookings
        if filters.get("owner_id"):
            rows = [b for b in rows if self.cars.get(b["car_id"], {}).get("owner_id") == filters["owner_id"]]
        if filters.get("status"):
            rows = [b for b in rows if b["status"] == filters["status"]]
        return [dict(b) for b in rows[offset:offset + limit]]

    def create_booking(self, data):
        booking = {**data, "id": self._new_id("booking"), "created_at": datetime(2030, 1, 1).isoformat()}
        self.bookings.append(booking)
        return booking

    def update_booking(self, booking_id, data):
        booking = next(b for b in self.bookings if b["id"] == booking_id)
        booking.update(data)
        return booking

    def cancel_booking(self, booking_id):
        return self.update_booking(booking_id, {"status": "canceledHost"})

    def insert_booking_extras(self, rows):
        self.booking_extras.extend(rows)
        return rows

    def advance_booking_statuses(self, now):
        self.advanced_at = now
        return {
            "changed_to_rent": 1,
            "changed_to_finished": 0,
            "canceled_unapproved_waited": 2,
            "canceled_unapproved_at_start": 0,
        }

    def get_calendar_window(self, owner_id, range_start, range_end):
        rows = []
        for car in self.cars.values():
            if owner_id and car["owner_id"] != owner_id:
                continue
            rows.append({
                "id": car["id"],
                "brand": "Toyota",
                "model": "Corolla",
                "license_plate": car.get("license_plate"),
                "bookings": [b for b in self.bookings if b["car_id"] == car["id"]],
            })
        return rows


class FakeEmailService:
    def __init__(self):
        self.sent = []
        self.service_id = "service"

    def send_booking_request_email(self, booking, car, driver):
        self.sent.append(("client", booking["id"], driver["email"]))
        return True

    def send_host_notification_email(self, booking, car, driver, host_email):
        self.sent.append(("host", booking["id"], host_email))
        return True


@pytest.fixture
def fake_db(monkeypatch):
    import app as app_module

    db = FakeDatabaseService()
    db.cars[CAR_ID] = make_car()
    db.profiles[OWNER_ID] = {"id": OWNER_ID, "email": "host@example.com", "is_host": True, "is_admin": False}
    db.profiles[OTHER_OWNER_ID] = {"id": OTHER_OWNER_ID, "email": "other@example.com", "is_host": True}
    db.profiles[ADMIN_ID] = {"id": ADMIN_ID, "email": "admin@example.com", "is_admin": True}
    db.passwords["host@example.com"] = ("host-pass", OWNER_ID)
    db.passwords["admin@example.com"] = ("admin-pass", ADMIN_ID)
    monkeypatch.setattr(app_module, "db_service", db)
    return db


@pytest.fixture
def fake_email(monkeypatch):
    import app as app_module

    email = FakeEmailService()
    monkeypatch.setattr(app_module, "email_service", email)
    return email


@pytest.fixture
def client(fake_db, fake_email):
    from app import app
    from utils import rate_limit_storage, booking_locks

    app.config.update(TESTING=True, SECRET_KEY="test-secret-key", SESSION_COOKIE_SECURE=False)
    rate_limit_storage.clear()
    booking_locks.clear()
    with app.test_client() as test_client:
        yield test_client
    rate_limit_storage.clear()
    booking_locks.clear()


def login_as(client, user_id, role):
    with client.session_transaction() as sess:
        sess["user_id"] = user_id
        sess["role"] = role
        sess["login_time"] = datetime.now().isoformat()
