"""Transfer model for escrow releases to a pro's connected account."""

from datetime import datetime
from homeservices import db
from homeservices.utils.money import as_float


class Transfer(db.Model):
    """Funds moved from the platform to the pro. At most one per payment."""

    __tablename__ = 'transfers'

    id = db.Column(db.String(255), primary_key=True)  # Stripe transfer id
    payment_id = db.Column(db.String(255), db.ForeignKey('payments.id'), nullable=False, unique=True)
    job_id = db.Column(db.String(64), nullable=False, index=True)
    pro_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    connected_account_id = db.Column(db.String(255), nullable=False)

    amount_gross = db.Column(db.Numeric(10, 2), nullable=True)
    amount_net = db.Column(db.Numeric(10, 2), nullable=False)
    platform_fee = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    manual_release = db.Column(db.Boolean, default=False, nullable=False)
    released_by = db.Column(db.String(64), nullable=False)  # user id or 'system'
    status = db.Column(db.String(20), default='pending', nullable=False)  # 'pending', 'completed'

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'payment_id': self.payment_id,
            'job_id': self.job_id,
            'pro_id': self.pro_id,
            'amount_net': as_float(self.amount_net),
            'platform_fee': as_float(self.platform_fee),
            'currency': self.currency,
            'manual_release': self.manual_release,
            'released_by': self.released_by,
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f'<Transfer {self.id}: payment {self.payment_id} - {self.status}>'
