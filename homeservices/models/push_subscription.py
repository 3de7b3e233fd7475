"""Push subscription model for web push notifications."""

from homeservices import db
from datetime import datetime


class PushSubscription(db.Model):
    """Stores user push notification subscriptions.

    Each user can have multiple subscriptions (different devices/browsers).
    The subscription contains the endpoint URL and encryption keys needed
    to send push notifications via the Web Push protocol.
    """
    __tablename__ = 'push_subscriptions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    endpoint = db.Column(db.Text, nullable=False, unique=True)
    p256dh_key = db.Column(db.Text, nullable=False)
    auth_key = db.Column(db.Text, nullable=False)
    device_name = db.Column(db.String(100), nullable=True)

    is_active = db.Column(db.Boolean, default=True)
    last_used_at = db.Column(db.DateTime, nullable=True)
    failed_count = db.Column(db.Integer, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<PushSubscription {self.id} user={self.user_id}>'

    def get_subscription_info(self):
        """Return subscription info in format needed by pywebpush."""
        return {
            'endpoint': self.endpoint,
            'keys': {
                'p256dh': self.p256dh_key,
                'auth': self.auth_key
            }
        }

    def mark_used(self):
        self.last_used_at = datetime.utcnow()
        self.failed_count = 0

    def mark_failed(self):
        """Increment failed count. Deactivate if too many failures."""
        self.failed_count = (self.failed_count or 0) + 1
        if self.failed_count >= 3:
            self.is_active = False
