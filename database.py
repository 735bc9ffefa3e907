"""
Database service module for RentalHub Flask API
Handles all Supabase database and storage operations
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple
from supabase import create_client, Client
from availability import is_blocking_booking
from booking_lifecycle import approval_deadline
from utils import to_iso

logger = logging.getLogger(__name__)

CATALOG_CAR_COLUMNS = """
    id, vin, model_id, year, license_plate, created_at, location_id,
    models(name, brands(name)),
    body_type, fuel_type, transmission, seats,
    locations(name, countries(id, name)),
    status, cover_photos, address, lat, long, pickup_info, return_info,
    is_delivery, delivery_fee, include_mileage, price, currency,
    open_time, close_time, min_rent_period, max_rent_period,
    interval_between_bookings, deposit, owner_id
"""

BOOKING_COLUMNS = (
    'id, car_id, user_id, start_at, end_at, status, mark, price_per_day, price_total, '
    'deposit, currency, delivery_type, delivery_fee, delivery_address, created_at'
)


class DatabaseService:
    """Service class for all database operations"""

    def __init__(self, url: str, anon_key: str, service_role_key: str = None):
        """Initialize database service with Supabase credentials"""
        self.url = url
        self.anon_key = anon_key
        self.service_role_key = service_role_key

        try:
            self.supabase: Client = create_client(url, anon_key)
            logger.info("Supabase anon client initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize Supabase anon client: {e}")
            self.supabase = None

        # Admin client will be created on demand
        self._admin_client = None

    def get_admin_client(self) -> Client:
        """Get admin client with service role key to bypass RLS"""
        if self._admin_client is not None:
            return self._admin_client

        if not self.service_role_key:
            raise RuntimeError("Service role key not configured")

        try:
            self._admin_client = create_client(self.url, self.service_role_key)
            logger.info("Supabase admin client initialized successfully")
            return self._admin_client
        except Exception as e:
            logger.error(f"Failed to create admin client: {e}")
            raise

    def ping(self) -> bool:
        self.supabase.table('cars').select('id').limit(1).execute()
        return True

    # Auth and profiles

    def sign_in(self, email: str, password: str) -> Optional[str]:
        """Check credentials against Supabase Auth, return the user id"""
        try:
            response = self.supabase.auth.sign_in_with_password({'email': email, 'password': password})
            return response.user.id if response and response.user else None
        except Exception as e:
            logger.warning(f"Sign in failed for {email}: {e}")
            return None

    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.get_admin_client().table('profiles').select('*').eq('id', user_id).limit(1).execute()
            return response.data[0] if response.data else None
        except Exception as e:
            logger.error(f"Error getting profile {user_id}: {e}")
            raise

    def find_profile_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.get_admin_client().table('profiles').select('*').eq('email', email).limit(1).execute()
            return response.data[0] if response.data else None
        except Exception as e:
            logger.error(f"Error looking up profile {email}: {e}")
            raise

    def create_profile(self, profile_data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.get_admin_client().table('profiles').insert(profile_data).execute()
            if not response.data:
                raise RuntimeError("Failed to create profile")
            return response.data[0]
        except Exception as e:
            logger.error(f"Error creating profile: {e}")
            raise

    def update_profile(self, profile_id: str, update_data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.get_admin_client().table('profiles').update(update_data).eq('id', profile_id).execute()
            if not response.data:
                raise RuntimeError("Failed to update profile")
            return response.data[0]
        except Exception as e:
            logger.error(f"Error updating profile {profile_id}: {e}")
            raise

    # Cars

    def get_catalog_cars(self, limit: int, offset: int, country_id: str = None,
                         location: str = None, search: str = None) -> Tuple[List[Dict[str, Any]], int]:
        """Available cars page with model/brand/location relations"""
        try:
            query = self.supabase.table('cars').select(CATALOG_CAR_COLUMNS, count='exact').eq('status', 'available')

            if country_id:
                query = query.eq('locations.countries.id', country_id)

            if location:
                query = query.ilike('locations.name', f"%{location}%")

            if search:
                term = search.strip()
                query = query.or_(f"name.ilike.%{term}%,brands.name.ilike.%{term}%", reference_table='models')

            response = query.order('created_at', desc=True).range(offset, offset + limit - 1).execute()
            cars = response.data or []
            return cars, response.count if response.count is not None else len(cars)
        except Exception as e:
            logger.error(f"Error getting catalog cars: {e}")
            raise

    def get_car_by_id(self, car_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.supabase.table('cars').select(CATALOG_CAR_COLUMNS).eq('id', car_id).limit(1).execute()
            return response.data[0] if response.data else None
        except Exception as e:
            logger.error(f"Error getting car {car_id}: {e}")
            raise

    def get_car_extras(self, car_id: str) -> List[Dict[str, Any]]:
        """Extras offered with a car, flattened with their catalogue metadata"""
        try:
            response = self.supabase.table('car_extras').select(
                'extra_id, price, is_available, extras(id, name, description, price_type, is_active)'
            ).eq('car_id', car_id).execute()
        except Exception as e:
            logger.error(f"Error getting extras for car {car_id}: {e}")
            raise

        extras = []
        for row in response.data or []:
            meta = row.get('extras') or {}
            if isinstance(meta, list):
                meta = meta[0] if meta else {}
            extras.append({
                'id': str(row['extra_id']),
                'title': meta.get('name') or str(row['extra_id']),
                'description': meta.get('description'),
                'price': float(row.get('price') or 0),
                'price_type': meta.get('price_type') or 'per_trip',
                'inactive': row.get('is_available') is False or meta.get('is_active') is False,
            })
        return extras

    def update_car(self, car_id: str, update_data: Dict[str, Any]) -> Dict[str, Any]:
        """Update car-level rental settings, prices or status"""
        try:
            response = self.get_admin_client().table('cars').update(update_data).eq('id', car_id).execute()
            if not response.data:
                raise RuntimeError("Failed to update car")
        except Exception as e:
            logger.error(f"Error updating car {car_id}: {e}")
            raise

        # locations.is_active depends on whether any car there is available
        try:
            self.get_admin_client().rpc('refresh_locations_is_active').execute()
        except Exception as e:
            logger.error(f"Failed to refresh locations.is_active: {e}")

        return response.data[0]

    def upsert_car_extra(self, car_id: str, extra_id: str, price: float) -> Dict[str, Any]:
        try:
            response = self.get_admin_client().table('car_extras').upsert(
                {'car_id': car_id, 'extra_id': extra_id, 'price': price},
                on_conflict='car_id,extra_id'
            ).execute()
            if not response.data:
                raise RuntimeError("Failed to save car extra")
            return response.data[0]
        except Exception as e:
            logger.error(f"Error saving extra {extra_id} for car {car_id}: {e}")
            raise

    def delete_car_extra(self, car_id: str, extra_id: str) -> bool:
        try:
            self.get_admin_client().table('car_extras').delete().eq(
                'car_id', car_id
            ).eq('extra_id', extra_id).execute()
            return True
        except Exception as e:
            logger.error(f"Error removing extra {extra_id} from car {car_id}: {e}")
            raise

    # Users a host refuses to rent to

    def get_blocked_user_ids(self, owner_id: str) -> List[str]:
        try:
            response = self.get_admin_client().table('host_user_blocks').select('user_id').eq(
                'owner_id', owner_id
            ).execute()
            return [str(row['user_id']) for row in response.data or []]
        except Exception as e:
            logger.error(f"Error getting blocked users for owner {owner_id}: {e}")
            raise

    def is_user_blocked_by_host(self, owner_id: str, user_id: str) -> bool:
        try:
            response = self.get_admin_client().table('host_user_blocks').select('user_id').eq(
                'owner_id', owner_id
            ).eq('user_id', user_id).limit(1).execute()
            return bool(response.data)
        except Exception as e:
            logger.error(f"Error checking block of user {user_id} by owner {owner_id}: {e}")
            raise

    def block_user_for_host(self, owner_id: str, user_id: str) -> Dict[str, Any]:
        try:
            response = self.get_admin_client().table('host_user_blocks').upsert(
                {'owner_id': owner_id, 'user_id': user_id},
                on_conflict='owner_id,user_id'
            ).execute()
            if not response.data:
                raise RuntimeError("Failed to block user")
            return response.data[0]
        except Exception as e:
            logger.error(f"Error blocking user {user_id} for owner {owner_id}: {e}")
            raise

    def unblock_user_for_host(self, owner_id: str, user_id: str) -> bool:
        try:
            self.get_admin_client().table('host_user_blocks').delete().eq(
                'owner_id', owner_id
            ).eq('user_id', user_id).execute()
            return True
        except Exception as e:
            logger.error(f"Error unblocking user {user_id} for owner {owner_id}: {e}")
            raise

    # Rental settings

    def get_owner_settings(self, owner_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.supabase.table('app_settings').select('*').eq(
                'owner_id', owner_id
            ).eq('scope', 'global').limit(1).execute()
            return response.data[0] if response.data else None
        except Exception as e:
            logger.error(f"Error getting settings for owner {owner_id}: {e}")
            raise

    def get_settings_for_owners(self, owner_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        """Global settings per owner; owners without a row get an empty dict"""
        if not owner_ids:
            return {}
        try:
            response = self.supabase.table('app_settings').select('*').in_(
                'owner_id', owner_ids
            ).eq('scope', 'global').execute()
        except Exception as e:
            logger.error(f"Error getting owner settings: {e}")
            raise

        settings = {str(owner_id): {} for owner_id in owner_ids}
        for row in response.data or []:
            settings[str(row['owner_id'])] = row
        return settings

    def upsert_owner_settings(self, owner_id: str, settings: Dict[str, Any]) -> Dict[str, Any]:
        try:
            row = {**settings, 'owner_id': owner_id, 'scope': 'global'}
            response = self.get_admin_client().table('app_settings').upsert(
                row, on_conflict='owner_id,scope'
            ).execute()
            if not response.data:
                raise RuntimeError("Failed to save settings")
            return response.data[0]
        except Exception as e:
            logger.error(f"Error saving settings for owner {owner_id}: {e}")
            raise

    # Pricing

    def get_pricing_rules(self, car_id: str) -> List[Dict[str, Any]]:
        try:
            response = self.supabase.table('pricing_rules').select(
                'id, car_id, min_days, discount_percent, created_at'
            ).eq('car_id', car_id).order('min_days').execute()
            return response.data or []
        except Exception as e:
            logger.error(f"Error getting pricing rules for car {car_id}: {e}")
            raise

    def get_pricing_rule(self, rule_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.get_admin_client().table('pricing_rules').select(
                'id, car_id, min_days, discount_percent, cars(owner_id)'
            ).eq('id', rule_id).limit(1).execute()
            return response.data[0] if response.data else None
        except Exception as e:
            logger.error(f"Error getting pricing rule {rule_id}: {e}")
            raise

    def upsert_pricing_rule(self, rule: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.get_admin_client().table('pricing_rules').upsert(rule).execute()
            if not response.data:
                raise RuntimeError("Failed to save pricing rule")
            return response.data[0]
        except Exception as e:
            logger.error(f"Error saving pricing rule: {e}")
            raise

    def delete_pricing_rule(self, rule_id: str) -> bool:
        try:
            self.get_admin_client().table('pricing_rules').delete().eq('id', rule_id).execute()
            return True
        except Exception as e:
            logger.error(f"Error deleting pricing rule {rule_id}: {e}")
            raise

    def get_seasonal_rates(self, car_id: str) -> List[Dict[str, Any]]:
        try:
            response = self.supabase.table('seasonal_rates').select(
                'id, car_id, start_date, end_date, adjustment_percent, created_at'
            ).eq('car_id', car_id).order('start_date').execute()
            return response.data or []
        except Exception as e:
            logger.error(f"Error getting seasonal rates for car {car_id}: {e}")
            raise

    def get_seasonal_rate(self, rate_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.get_admin_client().table('seasonal_rates').select(
                'id, car_id, start_date, end_date, adjustment_percent, cars(owner_id)'
            ).eq('id', rate_id).limit(1).execute()
            return response.data[0] if response.data else None
        except Exception as e:
            logger.error(f"Error getting seasonal rate {rate_id}: {e}")
            raise

    def upsert_seasonal_rate(self, rate: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.get_admin_client().table('seasonal_rates').upsert(rate).execute()
            if not response.data:
                raise RuntimeError("Failed to save seasonal rate")
            return response.data[0]
        except Exception as e:
            logger.error(f"Error saving seasonal rate: {e}")
            raise

    def delete_seasonal_rate(self, rate_id: str) -> bool:
        try:
            self.get_admin_client().table('seasonal_rates').delete().eq('id', rate_id).execute()
            return True
        except Exception as e:
            logger.error(f"Error deleting seasonal rate {rate_id}: {e}")
            raise

    # Bookings

    def get_blocking_bookings_in_range(self, car_ids: List[str], start: datetime,
                                       end: datetime) -> List[Dict[str, Any]]:
        """Bookings and blocks intersecting [start, end) that make the car unavailable"""
        if not car_ids:
            return []
        try:
            response = self.get_admin_client().table('bookings').select(
                'id, car_id, start_at, end_at, status, mark'
            ).in_('car_id', car_ids).lt('start_at', to_iso(end)).gt('end_at', to_iso(start)).execute()
        except Exception as e:
            logger.error(f"Error loading availability for {len(car_ids)} cars: {e}")
            raise

        return [b for b in response.data or [] if is_blocking_booking(b)]

    def get_bookings_by_car(self, car_id: str) -> List[Dict[str, Any]]:
        try:
            response = self.get_admin_client().table('bookings').select(
                'id, car_id, start_at, end_at, status, mark'
            ).eq('car_id', car_id).order('start_at').execute()
            return response.data or []
        except Exception as e:
            logger.error(f"Error getting bookings for car {car_id}: {e}")
            raise

    def get_booking_by_id(self, booking_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.get_admin_client().table('bookings').select(
                f"{BOOKING_COLUMNS}, cars(id, owner_id, license_plate)"
            ).eq('id', booking_id).limit(1).execute()
            return response.data[0] if response.data else None
        except Exception as e:
            logger.error(f"Error getting booking {booking_id}: {e}")
            raise

    def get_bookings_filtered(self, filters: Dict[str, Any], limit: int = 100,
                              offset: int = 0) -> List[Dict[str, Any]]:
        """Get bookings with filtering and pagination"""
        try:
            query = self.get_admin_client().table('bookings').select(
                f"{BOOKING_COLUMNS}, cars!inner(id, owner_id, license_plate, models(name, brands(name)))"
            )

            if filters.get('owner_id'):
                query = query.eq('cars.owner_id', filters['owner_id'])
            if filters.get('status'):
                query = query.eq('status', filters['status'])
            if filters.get('mark'):
                query = query.eq('mark', filters['mark'])
            if filters.get('car_id'):
                query = query.eq('car_id', filters['car_id'])
            if filters.get('from'):
                query = query.gte('end_at', filters['from'])
            if filters.get('to'):
                query = query.lte('start_at', filters['to'])

            response = query.order('start_at', desc=True).range(offset, offset + limit - 1).execute()
            return response.data or []
        except Exception as e:
            logger.error(f"Error getting filtered bookings: {e}")
            raise

    def create_booking(self, booking_data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.get_admin_client().table('bookings').insert(booking_data).execute()
            if not response.data:
                raise RuntimeError("Failed to create booking")
            return response.data[0]
        except Exception as e:
            logger.error(f"Error creating booking: {e}")
            raise

    def update_booking(self, booking_id: str, update_data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.get_admin_client().table('bookings').update(update_data).eq('id', booking_id).execute()
            if not response.data:
                raise RuntimeError("Failed to update booking")
            return response.data[0]
        except Exception as e:
            logger.error(f"Error updating booking {booking_id}: {e}")
            raise

    def cancel_booking(self, booking_id: str) -> Dict[str, Any]:
        """Soft cancel by the host"""
        return self.update_booking(booking_id, {'status': 'canceledHost'})

    def insert_booking_extras(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not rows:
            return []
        try:
            response = self.get_admin_client().table('booking_extras').insert(rows).execute()
            return response.data or []
        except Exception as e:
            logger.error(f"Error saving booking extras: {e}")
            raise

    def advance_booking_statuses(self, now: datetime) -> Dict[str, int]:
        """Apply the time-driven status transitions, returning how many rows moved"""
        client = self.get_admin_client()
        now_iso = to_iso(now)

        def run(query) -> int:
            return len(query.execute().data or [])

        try:
            to_rent = run(
                client.table('bookings').update({'status': 'rent'})
                .lte('start_at', now_iso).eq('mark', 'booking').eq('status', 'confirmed')
            )
            to_finished = run(
                client.table('bookings').update({'status': 'finished'})
                .lte('end_at', now_iso).eq('mark', 'booking').eq('status', 'rent')
            )
            waited = run(
                client.table('bookings').update({'status': 'canceledHost'})
                .lte('created_at', to_iso(approval_deadline(now))).gt('start_at', now_iso)
                .eq('mark', 'booking').eq('status', 'onApproval')
            )
            at_start = run(
                client.table('bookings').update({'status': 'canceledHost'})
                .lte('start_at', now_iso).eq('mark', 'booking').eq('status', 'onApproval')
            )
        except Exception as e:
            logger.error(f"Error advancing booking statuses: {e}")
            raise

        result = {
            'changed_to_rent': to_rent,
            'changed_to_finished': to_finished,
            'canceled_unapproved_waited': waited,
            'canceled_unapproved_at_start': at_start,
        }
        logger.info(f"Booking statuses advanced: {result}")
        return result

    # Calendar

    def get_calendar_window(self, owner_id: Optional[str], range_start: datetime,
                            range_end: datetime) -> List[Dict[str, Any]]:
        """Cars (all, or one owner's) with the bookings intersecting the window"""
        try:
            query = self.get_admin_client().table('cars').select('id, license_plate, owner_id, models(name, brands(name))')
            if owner_id:
                query = query.eq('owner_id', owner_id)
            cars = query.execute().data or []
        except Exception as e:
            logger.error(f"Error getting calendar cars: {e}")
            raise

        if not cars:
            return []

        car_ids = [c['id'] for c in cars]
        try:
            bookings = self.get_admin_client().table('bookings').select(
                'id, car_id, user_id, start_at, end_at, status, mark, price_total, currency, created_at'
            ).in_('car_id', car_ids).lte('start_at', to_iso(range_end)).gte('end_at', to_iso(range_start)).execute().data or []
        except Exception as e:
            logger.error(f"Error getting calendar bookings: {e}")
            raise

        by_car = {c['id']: [] for c in cars}
        for booking in bookings:
            by_car.setdefault(booking['car_id'], []).append(booking)

        result = []
        for car in cars:
            model = car.get('models') or {}
            if isinstance(model, list):
                model = model[0] if model else {}
            brand = model.get('brands') or {}
            if isinstance(brand, list):
                brand = brand[0] if brand else {}
            result.append({
                'id': car['id'],
                'brand': brand.get('name'),
                'model': model.get('name'),
                'license_plate': car.get('license_plate'),
                'bookings': by_car.get(car['id'], []),
            })
        return result

    # Storage

    def upload_file(self, bucket: str, path: str, content: bytes, content_type: str) -> str:
        try:
            self.get_admin_client().storage.from_(bucket).upload(
                path,
                content,
                file_options={'content-type': content_type, 'upsert': 'false'}
            )
            return path
        except Exception as e:
            logger.error(f"Error uploading {path} to bucket {bucket}: {e}")
            raise
