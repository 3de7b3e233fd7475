"""Payment model for escrowed job payments."""

from datetime import datetime
from decimal import Decimal
from homeservices import db
from homeservices.utils.money import as_float


class PaymentStatus:
    PENDING = 'pending'        # PaymentIntent created, waiting for processor confirmation
    CAPTURED = 'captured'      # Funds captured and held in escrow
    TRANSFERRED = 'transferred'  # Escrow released to the pro's connected account
    REFUNDED = 'refunded'      # Refunded through dispute resolution (full or partial)


class Payment(db.Model):
    """One customer charge held in escrow for a job.

    The primary key is the processor's PaymentIntent id. Amounts are stored
    in major currency units with 2 decimals.
    """

    __tablename__ = 'payments'

    id = db.Column(db.String(255), primary_key=True)
    job_id = db.Column(db.String(64), db.ForeignKey('jobs.id'), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    pro_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)  # Set once released
    connected_account_id = db.Column(db.String(255), nullable=True)

    amount_gross = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), default='eur', nullable=False)
    platform_fee = db.Column(db.Numeric(10, 2), nullable=True)
    total_refunded = db.Column(db.Numeric(10, 2), default=Decimal('0.00'), nullable=False)

    status = db.Column(db.String(20), default=PaymentStatus.PENDING, nullable=False, index=True)
    escrow_hold_until = db.Column(db.DateTime, nullable=True, index=True)

    # Stripe IDs
    stripe_payment_intent_id = db.Column(db.String(255), unique=True, nullable=False)
    stripe_charge_id = db.Column(db.String(255), nullable=True, index=True)
    transfer_id = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    captured_at = db.Column(db.DateTime, nullable=True)
    transferred_at = db.Column(db.DateTime, nullable=True)
    last_refunded_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        """Convert payment to dictionary."""
        return {
            'id': self.id,
            'job_id': self.job_id,
            'customer_id': self.customer_id,
            'pro_id': self.pro_id,
            'connected_account_id': self.connected_account_id,
            'amount_gross': as_float(self.amount_gross),
            'currency': self.currency,
            'platform_fee': as_float(self.platform_fee),
            'total_refunded': as_float(self.total_refunded),
            'status': self.status,
            'escrow_hold_until': self.escrow_hold_until.isoformat() if self.escrow_hold_until else None,
            'transfer_id': self.transfer_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'captured_at': self.captured_at.isoformat() if self.captured_at else None,
            'transferred_at': self.transferred_at.isoformat() if self.transferred_at else None,
        }

    def __repr__(self):
        return f'<Payment {self.id}: {self.amount_gross} {self.currency} - {self.status}>'
