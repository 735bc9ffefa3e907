"""
Email service module for RentalHub Flask API
Handles booking notifications using EmailJS
"""

import logging
import requests
from config import Config
from utils import parse_datetime

logger = logging.getLogger(__name__)

EMAILJS_SEND_URL = "https://api.emailjs.com/api/v1.0/email/send"


def booking_reference(booking: dict) -> str:
    return f"RH{str(booking['id'])[:8].upper()}"


class EmailService:
    """Service class for all email operations"""

    def __init__(self):
        """Initialize email service with EmailJS configuration"""
        self.service_id = Config.EMAILJS_SERVICE_ID
        self.public_key = Config.EMAILJS_PUBLIC_KEY
        self.private_key = Config.EMAILJS_PRIVATE_KEY
        self.booking_template_id = Config.EMAILJS_BOOKING_TEMPLATE_ID
        self.host_template_id = Config.EMAILJS_HOST_TEMPLATE_ID

    def send_emailjs_email(self, template_id: str, template_params: dict) -> bool:
        """Send email using EmailJS API"""
        data = {
            "service_id": self.service_id,
            "template_id": template_id,
            "user_id": self.public_key,
            "template_params": template_params
        }
        if self.private_key:
            data["accessToken"] = self.private_key

        try:
            response = requests.post(EMAILJS_SEND_URL, json=data, timeout=30)
        except requests.RequestException as e:
            logger.error(f"Error sending email via EmailJS: {e}")
            return False

        if response.status_code == 200:
            logger.info("Email sent successfully via EmailJS")
            return True

        logger.error(f"EmailJS API error: {response.status_code} - {response.text}")
        return False

    @staticmethod
    def booking_template_params(booking: dict, car: dict, driver: dict) -> dict:
        start = parse_datetime(booking['start_at'])
        end = parse_datetime(booking['end_at'])
        currency = booking.get('currency') or Config.DEFAULT_CURRENCY

        return {
            "client_name": driver.get('name') or driver.get('email'),
            "client_email": driver.get('email'),
            "client_phone": driver.get('phone', ''),
            "booking_reference": booking_reference(booking),
            "car_brand": car.get('brand'),
            "car_model": car.get('model'),
            "start_at": f"{start:%Y-%m-%d %H:%M}",
            "end_at": f"{end:%Y-%m-%d %H:%M}",
            "total_price": f"{float(booking.get('price_total') or 0):.2f} {currency}",
            "deposit": f"{float(booking.get('deposit') or 0):.2f} {currency}",
            "delivery": booking.get('delivery_address') or car.get('address') or '',
        }

    def send_booking_request_email(self, booking: dict, car: dict, driver: dict) -> bool:
        """Tell the client the request was received and awaits host approval"""
        if not all([self.service_id, self.booking_template_id, self.public_key]):
            logger.warning("EmailJS not configured for booking requests")
            return False

        return self.send_emailjs_email(
            self.booking_template_id,
            self.booking_template_params(booking, car, driver)
        )

    def send_host_notification_email(self, booking: dict, car: dict, driver: dict, host_email: str) -> bool:
        """Ask the host to approve the new request"""
        if not all([self.service_id, self.host_template_id, self.public_key]) or not host_email:
            logger.warning("EmailJS not configured for host notifications")
            return False

        params = self.booking_template_params(booking, car, driver)
        params["to_email"] = host_email
        params["message"] = (
            f"New booking request {params['booking_reference']} for "
            f"{car.get('brand')} {car.get('model')}, {params['start_at']} - {params['end_at']}. "
            f"Unanswered requests are cancelled after {Config.ON_APPROVAL_TIMEOUT_HOURS} hours."
        )
        return self.send_emailjs_email(self.host_template_id, params)
