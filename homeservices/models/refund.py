"""Refund model for partial and full refunds against a payment."""

from datetime import datetime
from homeservices import db
from homeservices.utils.money import as_float, quantize_amount


class Refund(db.Model):
    """A refund issued against a payment, from a customer request or a dispute."""

    __tablename__ = 'refunds'

    id = db.Column(db.String(255), primary_key=True)  # Stripe refund id
    payment_id = db.Column(db.String(255), db.ForeignKey('payments.id'), nullable=False, index=True)
    job_id = db.Column(db.String(64), nullable=True)
    dispute_id = db.Column(db.String(64), db.ForeignKey('disputes.id'), nullable=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)
    reason = db.Column(db.String(50), nullable=False)
    requested_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    @classmethod
    def total_for_payment(cls, session, payment_id):
        """Sum of all refund amounts recorded against a payment."""
        total = session.query(db.func.coalesce(db.func.sum(cls.amount), 0)).filter(
            cls.payment_id == payment_id
        ).scalar()
        return quantize_amount(total)

    def to_dict(self):
        return {
            'id': self.id,
            'payment_id': self.payment_id,
            'dispute_id': self.dispute_id,
            'amount': as_float(self.amount),
            'currency': self.currency,
            'reason': self.reason,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Refund {self.id}: {self.amount} {self.currency}>'
