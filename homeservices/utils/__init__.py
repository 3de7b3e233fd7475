"""Shared utilities for the home-services backend.

This package contains reusable utilities that are shared across
the payment and dispute modules.
"""

from homeservices.utils.auth import token_required, is_admin_user
from homeservices.utils.user_helpers import get_display_name, send_push_safe

__all__ = [
    'token_required',
    'is_admin_user',
    'get_display_name',
    'send_push_safe',
]
