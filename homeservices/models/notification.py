"""Notification model for in-app user notifications."""

import json
from homeservices import db
from datetime import datetime


class Notification(db.Model):
    """Model for storing user notifications."""

    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    type = db.Column(db.String(50), nullable=False)  # e.g., 'dispute_opened', 'dispute_resolved'
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)

    # Dynamic data for the client - case id, job id, decision
    data = db.Column(db.Text, nullable=True)  # JSON string

    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<Notification {self.id} for User {self.user_id}: {self.type}>'

    def set_data(self, data_dict: dict):
        """Set the data field from a dictionary."""
        self.data = json.dumps(data_dict) if data_dict else None

    def get_data(self) -> dict:
        """Get the data field as a dictionary."""
        if self.data:
            try:
                return json.loads(self.data)
            except (json.JSONDecodeError, TypeError):
                return {}
        return {}

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'type': self.type,
            'title': self.title,
            'message': self.message,
            'data': self.get_data(),
            'is_read': self.is_read,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


# Notification type constants
class NotificationType:
    DISPUTE_OPENED = 'dispute_opened'
    DISPUTE_UPDATE = 'dispute_update'
    DISPUTE_RESOLVED = 'dispute_resolved'
    MODERATION_REMINDER = 'moderation_reminder'
