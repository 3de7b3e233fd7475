"""Best-effort notification sink for payment and dispute transitions.

Engines call ``notify`` only after their own transaction has committed.
The sink stores an in-app notification and sends a web push; any failure
is logged and swallowed so it can never undo or block a transition.
"""

import logging

from homeservices import db
from homeservices.models import Notification, User
from homeservices.services.push_notifications import send_push_notification
from homeservices.utils.user_helpers import send_push_safe

logger = logging.getLogger(__name__)


class NotificationSink:

    def __init__(self, session=None, push=send_push_notification):
        self.session = session or db.session
        self.push = push

    def notify(self, recipient_id, title, body, data=None):
        """Store an in-app notification and push it to the recipient's devices.

        Returns:
            bool: True if the in-app notification was stored
        """
        if recipient_id is None:
            logger.warning(f'[NOTIFY] No recipient for "{title}", skipping')
            return False

        stored = False
        try:
            notification = Notification(
                user_id=recipient_id,
                type=(data or {}).get('type', 'general'),
                title=title,
                message=body,
            )
            notification.set_data(data)
            self.session.add(notification)
            self.session.commit()
            stored = True
        except Exception as e:
            self.session.rollback()
            logger.warning(f'[NOTIFY] In-app notification for user {recipient_id} failed (non-critical): {e}')

        send_push_safe(self.push, recipient_id, title, body, data)
        return stored

    def notify_admins(self, title, body, data=None):
        """Notify every admin user. Returns the number of admins notified."""
        try:
            admin_ids = [u.id for u in User.query.filter(
                db.or_(User.is_admin.is_(True), User.role == 'admin')
            ).all()]
        except Exception as e:
            self.session.rollback()
            logger.warning(f'[NOTIFY] Could not load admin users (non-critical): {e}')
            return 0

        return sum(1 for admin_id in admin_ids if self.notify(admin_id, title, body, data))
