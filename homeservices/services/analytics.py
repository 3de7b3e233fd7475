"""Server-side analytics events for escrow and dispute transitions."""

import hashlib
import json
import logging
import re
from datetime import datetime

from homeservices import db
from homeservices.models import AnalyticsEvent

logger = logging.getLogger(__name__)

# Whitelist of property keys accepted on server events
ALLOWED_PROP_KEYS = {
    'paymentId',
    'jobId',
    'transferId',
    'caseId',
    'amountEur',
    'amountNet',
    'platformFee',
    'totalRefunded',
    'refundDelta',
    'disputeReason',
    'disputeOutcome',
    'transferType',
    'chargesEnabled',
    'payoutsEnabled',
    'detailsSubmitted',
}

PII_KEYWORDS = ('email', 'phone', 'address', 'name', 'street', 'city')
EMAIL_RE = re.compile(r'^[^@]+@[^@]+\.[^@]+$')
PHONE_RE = re.compile(r'^\+?[\d\-()]{10,}$')


def contains_pii(value: str) -> bool:
    """Check if a string looks like an email, phone number or address fragment."""
    if EMAIL_RE.match(value):
        return True
    if PHONE_RE.match(value.replace(' ', '')):
        return True
    lower_value = value.lower()
    return any(keyword in lower_value for keyword in PII_KEYWORDS)


def sanitize_props(props: dict) -> dict:
    """Keep whitelisted keys with short, PII-free scalar values."""
    sanitized = {}
    for key, value in (props or {}).items():
        if key not in ALLOWED_PROP_KEYS:
            continue
        if isinstance(value, bool) or value is None:
            sanitized[key] = value
        elif isinstance(value, (int, float)):
            sanitized[key] = value
        elif isinstance(value, str):
            if len(value) <= 120 and not contains_pii(value):
                sanitized[key] = value
        else:
            # Decimal amounts
            try:
                sanitized[key] = float(value)
            except (TypeError, ValueError):
                continue
    return sanitized


class AnalyticsSink:

    def __init__(self, session=None, salt='default_salt_change_me', request=None):
        self.session = session or db.session
        self.salt = salt
        self.request = request  # default request for IP / user-agent hashes

    def hash_with_salt(self, value: str) -> str:
        return hashlib.sha256((self.salt + value).encode('utf-8')).hexdigest()

    def log_server_event(self, name, uid=None, role=None, props=None, request=None):
        """Record an analytics event. Never raises.

        Returns:
            bool: True if the event was stored
        """
        context = {'platform': 'server', 'appVersion': 'api'}
        request = request if request is not None else self.request
        if request is not None:
            if request.remote_addr:
                context['ipHash'] = self.hash_with_salt(request.remote_addr)
            user_agent = request.headers.get('User-Agent')
            if user_agent:
                context['uaHash'] = self.hash_with_salt(user_agent)

        try:
            event = AnalyticsEvent(
                name=name,
                uid=uid,
                role=role,
                src='server',
                props=json.dumps(sanitize_props(props)),
                context=json.dumps(context),
                ts=datetime.utcnow(),
            )
            self.session.add(event)
            self.session.commit()
            logger.info(f'[ANALYTICS] Server event logged: {name} (uid={uid}, role={role})')
            return True
        except Exception as e:
            self.session.rollback()
            logger.error(f'[ANALYTICS] Error logging server event {name}: {e}')
            return False
