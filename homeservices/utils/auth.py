"""Shared authentication utilities.

This module provides the JWT authentication decorator used by the
payment and dispute routes, and the admin predicate injected into the
escrow and dispute engines.
"""

import logging
from functools import wraps

import jwt
from flask import current_app, jsonify, request

logger = logging.getLogger(__name__)


def _unauthenticated(message):
    return jsonify({'error': message, 'code': 'unauthenticated'}), 401


def decode_user_id(token):
    """Decode a JWT and return its ``user_id`` claim.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired or has no user_id
    """
    payload = jwt.decode(token, current_app.config['JWT_SECRET_KEY'], algorithms=['HS256'])
    if 'user_id' not in payload:
        raise jwt.InvalidTokenError('Token has no user_id claim')
    return payload['user_id']


def token_required(f):
    """
    Decorator to require valid JWT token.

    Extracts user_id from JWT token and passes it as the first argument
    to the decorated function.

    Usage:
        @payments_bp.route('/<payment_id>')
        @token_required
        def get_payment(current_user_id, payment_id):
            ...
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        auth_header = request.headers.get('Authorization')

        if not auth_header:
            return _unauthenticated('Token is missing')

        try:
            # Support both "Bearer <token>" and raw token formats
            token = auth_header.split(' ')[1] if ' ' in auth_header else auth_header
            current_user_id = decode_user_id(token)
        except jwt.ExpiredSignatureError:
            return _unauthenticated('Token has expired')
        except (jwt.InvalidTokenError, IndexError):
            return _unauthenticated('Token is invalid')

        return f(current_user_id, *args, **kwargs)
    return decorated


def is_admin_user(user_id):
    """Check if user is admin (by flag, role or email whitelist)."""
    from homeservices import db
    from homeservices.models import User

    if user_id is None:
        return False
    user = db.session.get(User, user_id)
    if not user:
        return False
    if user.is_admin or user.role == 'admin':
        return True
    email = (user.email or '').strip().lower()
    return bool(email) and email in current_app.config.get('ADMIN_EMAILS', [])
