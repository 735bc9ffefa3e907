"""
Authentication module for RentalHub Flask API
Handles back-office sign in (Supabase Auth + profile roles) and session management
"""

import logging
from datetime import datetime
from functools import wraps
from flask import session, jsonify, request
from config import Config

logger = logging.getLogger(__name__)


def _session_expired() -> bool:
    login_time = session.get('login_time')
    if not login_time:
        return False
    return datetime.now() - datetime.fromisoformat(login_time) > Config.PERMANENT_SESSION_LIFETIME


def _require_roles(*roles):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not session.get('user_id'):
                return jsonify({'error': 'Authentication required'}), 401

            if _session_expired():
                session.clear()
                return jsonify({'error': 'Session expired'}), 401

            if session.get('role') not in roles:
                logger.warning(f"User {session.get('user_id')} with role {session.get('role')} denied")
                return jsonify({'error': 'Insufficient permissions'}), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator


admin_required = _require_roles('admin')
host_required = _require_roles('admin', 'host')


def role_for_profile(profile: dict):
    if not profile or profile.get('status') == 'blocked':
        return None
    if profile.get('is_admin'):
        return 'admin'
    if profile.get('is_host'):
        return 'host'
    return None


def login(db_service, email: str, password: str) -> dict:
    """Sign in a back-office user; only admins and hosts get a session"""
    user_id = db_service.sign_in(email, password)
    if not user_id:
        logger.warning(f"Failed login attempt for '{email}'")
        return {'error': 'Invalid credentials'}

    role = role_for_profile(db_service.get_profile(user_id))
    if role is None:
        logger.warning(f"User {email} has no back-office access")
        return {'error': 'Access denied'}

    session.clear()
    session['user_id'] = user_id
    session['email'] = email
    session['role'] = role
    session['login_time'] = datetime.now().isoformat()
    session.permanent = True

    logger.info(f"{role.capitalize()} login successful for {email}")

    return {
        'success': True,
        'user_id': user_id,
        'role': role,
        'session_expires': (datetime.now() + Config.PERMANENT_SESSION_LIFETIME).isoformat()
    }


def logout() -> dict:
    session.clear()
    return {'success': True, 'message': 'Logged out successfully'}


def get_session_status() -> dict:
    if not session.get('user_id'):
        return {'logged_in': False, 'user_id': None, 'role': None, 'session_expires': None}

    login_time = session.get('login_time')
    session_expires = None
    if login_time:
        session_expires = (datetime.fromisoformat(login_time) + Config.PERMANENT_SESSION_LIFETIME).isoformat()

    return {
        'logged_in': True,
        'user_id': session.get('user_id'),
        'email': session.get('email'),
        'role': session.get('role'),
        'session_expires': session_expires
    }


def current_owner_id():
    """Hosts only see their own fleet; admins may scope with ?owner_id="""
    if session.get('role') == 'host':
        return session.get('user_id')
    return request.args.get('owner_id') or None
