"""
Configuration module for RentalHub Flask API
Centralized configuration management for all environment variables and settings
"""

import os
from datetime import timedelta
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Centralized configuration class for RentalHub API"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY')
    SESSION_COOKIE_SECURE = os.environ.get('SESSION_COOKIE_SECURE', 'true').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'None'  # back-office and catalog live on other origins
    PERMANENT_SESSION_LIFETIME = timedelta(hours=8)

    # CORS Configuration
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            'CORS_ORIGINS',
            'http://localhost:3000,http://localhost:5173'
        ).split(',')
        if origin.strip()
    ]
    CORS_SUPPORTS_CREDENTIALS = True
    CORS_ALLOW_HEADERS = [
        'Content-Type',
        'Authorization',
        'X-Requested-With',
        'Accept',
        'Origin',
        'Cache-Control',
    ]
    CORS_METHODS = ['GET', 'POST', 'PUT', 'DELETE', 'OPTIONS', 'PATCH']
    CORS_MAX_AGE = 86400  # Cache preflight for 24 hours

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Supabase Configuration
    SUPABASE_URL = os.environ.get('SUPABASE_URL')
    SUPABASE_ANON_KEY = os.environ.get('SUPABASE_ANON_KEY')
    SUPABASE_SERVICE_ROLE_KEY = os.environ.get('SUPABASE_SERVICE_ROLE_KEY')

    # Wall-clock rules (working hours, calendar days) are evaluated in this zone
    BUSINESS_TIMEZONE = os.environ.get('BUSINESS_TIMEZONE', 'UTC')

    # EmailJS Configuration
    EMAILJS_SERVICE_ID = os.environ.get('EMAILJS_SERVICE_ID')
    EMAILJS_PUBLIC_KEY = os.environ.get('EMAILJS_PUBLIC_KEY')
    EMAILJS_PRIVATE_KEY = os.environ.get('EMAILJS_PRIVATE_KEY')
    EMAILJS_BOOKING_TEMPLATE_ID = os.environ.get('EMAILJS_BOOKING_TEMPLATE_ID')
    EMAILJS_HOST_TEMPLATE_ID = os.environ.get('EMAILJS_HOST_TEMPLATE_ID')

    # File Upload Configuration
    ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'webp', 'pdf', 'heic'}
    MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
    DRIVER_LICENSE_BUCKET = 'driver-licenses'

    # Rate Limiting Configuration
    RATE_LIMIT_WINDOW = 3600  # 1 hour
    RATE_LIMIT_MAX_REQUESTS = 10

    # Booking Configuration
    BOOKING_MARKS = ['booking', 'block']
    BOOKING_STATUSES = ['onApproval', 'confirmed', 'rent', 'finished', 'canceledHost', 'canceledClient']
    BLOCKING_BOOKING_STATUSES = {'onapproval', 'confirmed', 'rent'}
    ACTIVE_CALENDAR_STATUSES = {'onApproval', 'confirmed', 'rent', 'finished'}
    DELIVERY_TYPES = ['car_address', 'by_address']
    CAR_STATUSES = ['available', 'blocked']
    ON_APPROVAL_TIMEOUT_HOURS = 2

    # Picker / pricing defaults
    DEFAULT_MINUTE_STEP = 30
    DEFAULT_CURRENCY = 'EUR'

    # Listing limits
    CATALOG_PAGE_SIZE = 10
    ADMIN_MAX_PAGE_SIZE = 500

    @classmethod
    def validate_required_config(cls):
        """Validate that all required configuration is present"""
        required_vars = [
            'SECRET_KEY',
            'SUPABASE_URL',
            'SUPABASE_ANON_KEY'
        ]

        missing_vars = []
        for var in required_vars:
            if not getattr(cls, var):
                missing_vars.append(var)

        if missing_vars:
            raise ValueError(f"Missing required environment variables: {', '.join(missing_vars)}")

        return True
