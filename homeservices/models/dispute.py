"""Dispute model for customer complaints against an escrowed payment."""

import uuid
from datetime import datetime
from homeservices import db
from homeservices.utils.money import as_float


class DisputeStatus:
    OPEN = 'open'
    UNDER_REVIEW = 'under_review'
    RESOLVED_REFUND_FULL = 'resolved_refund_full'
    RESOLVED_REFUND_PARTIAL = 'resolved_refund_partial'
    RESOLVED_NO_REFUND = 'resolved_no_refund'
    EXPIRED = 'expired'

    ACTIVE = (OPEN, UNDER_REVIEW)


def _new_case_id():
    return uuid.uuid4().hex


class Dispute(db.Model):
    """A dispute opened by the customer against a captured payment.

    ``evidence`` holds customer entries, ``pro_response`` holds pro entries
    and ``audit`` the ordered history of actions. All three are JSON lists
    that are only ever appended to.
    """

    __tablename__ = 'disputes'

    id = db.Column(db.String(64), primary_key=True, default=_new_case_id)  # case id
    job_id = db.Column(db.String(64), db.ForeignKey('jobs.id'), nullable=False, index=True)
    payment_id = db.Column(db.String(255), db.ForeignKey('payments.id'), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    pro_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    opened_by = db.Column(db.String(20), default='customer', nullable=False)

    reason = db.Column(db.String(50), nullable=False)
    description = db.Column(db.Text, nullable=False)
    requested_amount = db.Column(db.Numeric(10, 2), nullable=False)
    awarded_amount = db.Column(db.Numeric(10, 2), nullable=True)

    evidence = db.Column(db.JSON, nullable=False, default=list)
    pro_response = db.Column(db.JSON, nullable=False, default=list)
    audit = db.Column(db.JSON, nullable=False, default=list)

    status = db.Column(db.String(30), default=DisputeStatus.OPEN, nullable=False, index=True)
    deadline_pro_response = db.Column(db.DateTime, nullable=False, index=True)
    deadline_decision = db.Column(db.DateTime, nullable=False, index=True)

    opened_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    resolved_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    VALID_REASONS = [
        'no_show',       # Pro didn't show up
        'poor_quality',  # Work doesn't meet expectations
        'damage',        # Property was damaged
        'overcharge',    # Charged more than agreed
        'other'          # Other issues
    ]

    REASON_LABELS = {
        'no_show': 'No Show',
        'poor_quality': 'Poor Work Quality',
        'damage': 'Damage',
        'overcharge': 'Overcharge',
        'other': 'Other Issue'
    }

    @property
    def is_active(self):
        return self.status in DisputeStatus.ACTIVE

    def append_evidence(self, entries):
        self.evidence = list(self.evidence or []) + list(entries)

    def append_pro_response(self, entries):
        self.pro_response = list(self.pro_response or []) + list(entries)

    def append_audit(self, actor, action, note, at):
        self.audit = list(self.audit or []) + [{
            'actor': actor,
            'action': action,
            'note': note,
            'at': at.isoformat(),
        }]

    def to_dict(self):
        """Convert dispute to dictionary."""
        return {
            'id': self.id,
            'job_id': self.job_id,
            'payment_id': self.payment_id,
            'customer_id': self.customer_id,
            'pro_id': self.pro_id,
            'opened_by': self.opened_by,
            'reason': self.reason,
            'reason_label': self.REASON_LABELS.get(self.reason, self.reason),
            'description': self.description,
            'requested_amount': as_float(self.requested_amount),
            'awarded_amount': as_float(self.awarded_amount),
            'evidence': self.evidence or [],
            'pro_response': self.pro_response or [],
            'audit': self.audit or [],
            'status': self.status,
            'deadline_pro_response': self.deadline_pro_response.isoformat(),
            'deadline_decision': self.deadline_decision.isoformat(),
            'opened_at': self.opened_at.isoformat() if self.opened_at else None,
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
        }

    def __repr__(self):
        return f'<Dispute {self.id}: Job {self.job_id} - {self.status}>'
