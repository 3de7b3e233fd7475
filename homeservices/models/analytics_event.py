"""Server-side analytics events emitted on payment and dispute transitions."""

import json
from datetime import datetime
from homeservices import db


class AnalyticsEvent(db.Model):
    __tablename__ = 'analytics_events'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, index=True)
    uid = db.Column(db.Integer, nullable=True, index=True)
    role = db.Column(db.String(20), nullable=True)
    src = db.Column(db.String(20), default='server', nullable=False)
    props = db.Column(db.Text, nullable=True)  # JSON string, whitelisted keys only
    context = db.Column(db.Text, nullable=True)  # JSON string
    ts = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    def get_props(self) -> dict:
        return json.loads(self.props) if self.props else {}

    def __repr__(self):
        return f'<AnalyticsEvent {self.id}: {self.name}>'
