"""Shared user-related helper functions."""

import logging

logger = logging.getLogger(__name__)


def get_display_name(user):
    """
    Get the best display name for a user.

    Priority:
    1. first_name (if available)
    2. username (if available)
    3. 'Someone' (fallback)
    """
    if not user:
        return 'Someone'
    if user.first_name:
        return user.first_name
    return user.username or 'Someone'


def send_push_safe(push_func, *args, **kwargs):
    """
    Call a best-effort side effect, handling errors gracefully.

    Notification and analytics failures must never fail a payment or
    dispute transition. This wrapper catches any exception and logs it
    without re-raising.

    Returns:
        The function's result, or None if it raised
    """
    try:
        return push_func(*args, **kwargs)
    except Exception as e:
        logger.warning(f'Side effect {getattr(push_func, "__name__", push_func)} failed (non-critical): {e}')
        return None
