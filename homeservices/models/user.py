"""User model (owned by the profile subsystem, read here for roles and Connect status)."""

from datetime import datetime
from homeservices import db


class User(db.Model):
    """Customer, pro or admin account."""

    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    first_name = db.Column(db.String(80), nullable=True)
    last_name = db.Column(db.String(80), nullable=True)
    role = db.Column(db.String(20), default='customer', nullable=False)  # 'customer', 'pro', 'admin'
    is_admin = db.Column(db.Boolean, default=False, nullable=False)

    # Stripe Connect (pros receive escrow releases on their connected account)
    stripe_account_id = db.Column(db.String(255), unique=True, nullable=True, index=True)
    stripe_charges_enabled = db.Column(db.Boolean, default=False, nullable=False)
    stripe_payouts_enabled = db.Column(db.Boolean, default=False, nullable=False)
    stripe_details_submitted = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self):
        """Convert user to dictionary."""
        return {
            'id': self.id,
            'username': self.username,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'role': self.role,
            'stripe_account_id': self.stripe_account_id,
            'stripe_charges_enabled': self.stripe_charges_enabled,
            'stripe_payouts_enabled': self.stripe_payouts_enabled,
            'stripe_details_submitted': self.stripe_details_submitted,
        }

    def __repr__(self):
        return f'<User {self.username}>'
