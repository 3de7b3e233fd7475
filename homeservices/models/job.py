"""Job model for booked home services."""

from datetime import datetime
from homeservices import db


class Job(db.Model):
    """A booked job between a customer and an assigned pro.

    Jobs are written by matching, escrow and disputes alike, so escrow code
    only ever issues partial-field updates against this table.
    """

    __tablename__ = 'jobs'

    id = db.Column(db.String(64), primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    assigned_pro_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    # 'open', 'assigned', 'in_progress', 'completed', 'cancelled'
    status = db.Column(db.String(20), default='open', nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'customer_id': self.customer_id,
            'assigned_pro_id': self.assigned_pro_id,
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f'<Job {self.id}: {self.status}>'
