"""
WSGI entry point for Passenger/cPanel style hosting
"""
import os
import sys

# Passenger starts from the account root, not the app directory
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from app import app as application  # noqa: E402
