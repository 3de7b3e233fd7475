"""Dispute engine: opening, evidence exchange, admin resolution and sweeps."""

import logging
import os
import uuid
from datetime import datetime, timedelta

from homeservices import db
from homeservices.models import Dispute, DisputeStatus, Job, NotificationType, Payment, PaymentStatus, Refund, User
from homeservices.services.analytics import AnalyticsSink
from homeservices.services.escrow import parse_amount, refunded_so_far
from homeservices.services.notifications import NotificationSink
from homeservices.utils.errors import (
    AlreadyExists, DeadlineExceeded, FailedPrecondition, InvalidArgument, NotFound,
    PermissionDenied, require_caller, service_operation,
)
from homeservices.utils.money import quantize_amount, to_minor_units
from homeservices.utils.user_helpers import get_display_name, send_push_safe

logger = logging.getLogger(__name__)

ROLES = ('customer', 'pro')
DECISIONS = ('refund_full', 'refund_partial', 'no_refund')

DECISION_STATUS = {
    'refund_full': DisputeStatus.RESOLVED_REFUND_FULL,
    'refund_partial': DisputeStatus.RESOLVED_REFUND_PARTIAL,
    'no_refund': DisputeStatus.RESOLVED_NO_REFUND,
}

IMAGE_EXTENSIONS = {'jpg', 'jpeg', 'png', 'gif', 'webp'}
AUDIO_EXTENSIONS = {'mp3', 'wav', 'm4a', 'aac', 'ogg'}


def evidence_type(path):
    """Classify an uploaded evidence file by its extension."""
    ext = os.path.splitext(path)[1].lstrip('.').lower()
    if ext in IMAGE_EXTENSIONS:
        return 'image'
    if ext in AUDIO_EXTENSIONS:
        return 'audio'
    return 'file'


def _media_entries(author, paths, at):
    return [{
        'author': author,
        'type': evidence_type(path),
        'path': path,
        'created_at': at.isoformat(),
    } for path in paths]


def _resolution_messages(decision, refund_amount):
    if decision == 'refund_full':
        return ('Your dispute was resolved with a full refund',
                'The dispute was resolved with a full refund to the customer')
    if decision == 'refund_partial':
        return (f'Your dispute was resolved with a partial refund of €{refund_amount}',
                f'The dispute was resolved with a partial refund of €{refund_amount} to the customer')
    return ('Your dispute was resolved with no refund',
            'The dispute was resolved with no refund')


def _clean_paths(media_paths):
    if media_paths is None:
        return []
    if isinstance(media_paths, str) or not all(isinstance(p, str) and p.strip() for p in media_paths):
        raise InvalidArgument('mediaPaths must be a list of file paths')
    return [p.strip() for p in media_paths]


class DisputeService:
    """Owns the Dispute lifecycle: open -> under_review -> resolved_* | expired."""

    def __init__(self, gateway, notifier=None, analytics=None, is_admin=None, clock=None,
                 session=None, window_hours=336, pro_response_hours=24, decision_hours=48,
                 lookahead_hours=12):
        self.session = session or db.session
        self.gateway = gateway
        self.notifier = notifier or NotificationSink(self.session)
        self.analytics = analytics or AnalyticsSink(self.session)
        self.is_admin = is_admin or (lambda user_id: False)
        self.clock = clock or datetime.utcnow
        self.window = timedelta(hours=window_hours)
        self.pro_response_time = timedelta(hours=pro_response_hours)
        self.decision_time = timedelta(hours=decision_hours)
        self.lookahead = timedelta(hours=lookahead_hours)

    def _notify(self, recipient_id, title, body, data):
        send_push_safe(self.notifier.notify, recipient_id, title, body, data)

    def _emit(self, name, uid, role, props):
        send_push_safe(self.analytics.log_server_event, name, uid=uid, role=role, props=props)

    def _lock_dispute(self, case_id):
        return self.session.query(Dispute).filter_by(id=case_id).with_for_update().first()

    @service_operation('Failed to open dispute')
    def open_dispute(self, caller_id, job_id, payment_id, reason, description,
                     requested_amount, media_paths=None):
        """Open a dispute against a captured payment.

        Returns:
            dict: {'caseId'}
        """
        require_caller(caller_id)

        description = (description or '').strip() if isinstance(description, str) else None
        if not job_id or not payment_id or not reason or not description or requested_amount is None:
            raise InvalidArgument('Missing or invalid required fields')

        if reason not in Dispute.VALID_REASONS:
            raise InvalidArgument(f'Invalid reason. Must be one of: {Dispute.VALID_REASONS}')

        requested = parse_amount(requested_amount, 'requestedAmount')
        if requested <= 0:
            raise InvalidArgument('requestedAmount must be positive')

        paths = _clean_paths(media_paths)

        # Locked like release_transfer and partial_refund
        payment = self.session.query(Payment).filter_by(id=payment_id).with_for_update().first()
        if not payment:
            raise NotFound('Payment not found')

        if payment.customer_id != caller_id:
            raise PermissionDenied('Only the paying customer can open a dispute')

        if payment.job_id != job_id:
            raise InvalidArgument('Payment does not belong to this job')

        if payment.status != PaymentStatus.CAPTURED:
            raise FailedPrecondition('Payment must be captured to open a dispute')

        now = self.clock()
        captured_at = payment.captured_at or payment.created_at
        if now > captured_at + self.window:
            raise DeadlineExceeded('Dispute window has closed')

        if requested > quantize_amount(payment.amount_gross):
            raise InvalidArgument('Requested amount cannot exceed payment amount')

        # Lock the job so two concurrent opens cannot both pass the active check
        job = self.session.query(Job).filter_by(id=job_id).with_for_update().first()
        if not job:
            raise NotFound('Job not found')

        existing = self.session.query(Dispute.id).filter(
            Dispute.job_id == job_id,
            Dispute.status.in_(DisputeStatus.ACTIVE),
        ).first()
        if existing:
            raise AlreadyExists('An active dispute already exists for this job')

        pro_id = job.assigned_pro_id or payment.pro_id
        customer_name = get_display_name(self.session.get(User, caller_id))
        dispute = Dispute(
            id=uuid.uuid4().hex,
            job_id=job_id,
            payment_id=payment_id,
            customer_id=caller_id,
            pro_id=pro_id,
            opened_by='customer',
            reason=reason,
            description=description,
            requested_amount=requested,
            evidence=_media_entries('customer', paths, now),
            pro_response=[],
            audit=[],
            status=DisputeStatus.OPEN,
            deadline_pro_response=now + self.pro_response_time,
            deadline_decision=now + self.decision_time,
            opened_at=now,
            updated_at=now,
        )
        self.session.add(dispute)
        self.session.commit()

        case_id = dispute.id
        logger.info(f'[DISPUTES] Dispute {case_id} opened on job {job_id} by customer {caller_id}')

        self._notify(pro_id, 'New Dispute Opened',
                     f'{customer_name} has opened a dispute for one of your jobs',
                     {'type': NotificationType.DISPUTE_OPENED, 'caseId': case_id, 'jobId': job_id})
        self._emit('dispute_opened', caller_id, 'customer', {
            'caseId': case_id,
            'jobId': job_id,
            'paymentId': payment_id,
            'disputeReason': reason,
            'amountEur': requested,
        })
        return {'caseId': case_id}

    @service_operation('Failed to add evidence')
    def add_evidence(self, caller_id, case_id, role, text=None, media_path=None, media_paths=None):
        """Append an evidence entry (customer) or a response entry (pro) to a dispute."""
        require_caller(caller_id)

        if not case_id or role not in ROLES:
            raise InvalidArgument('caseId and a role of customer or pro are required')

        paths = _clean_paths(media_paths)
        if media_path is not None:
            paths = _clean_paths([media_path]) + paths
        text = text.strip() if isinstance(text, str) else None
        if not text and not paths:
            raise InvalidArgument('Must provide text or media evidence')

        dispute = self._lock_dispute(case_id)
        if not dispute:
            raise NotFound('Dispute not found')

        party_id = dispute.customer_id if role == 'customer' else dispute.pro_id
        if party_id != caller_id:
            raise PermissionDenied('Access denied')

        if not dispute.is_active:
            raise FailedPrecondition('Cannot add evidence to a closed dispute')

        now = self.clock()
        entries = []
        if text:
            entries.append({'author': role, 'type': 'text', 'text': text, 'created_at': now.isoformat()})
        entries.extend(_media_entries(role, paths, now))

        moved_to_review = False
        if role == 'customer':
            dispute.append_evidence(entries)
        else:
            first_response = not dispute.pro_response
            dispute.append_pro_response(entries)
            moved_to_review = first_response and dispute.status == DisputeStatus.OPEN

        dispute.append_audit(role, f'{role}_evidence_added', f'{len(entries)} item(s) added', now)
        if moved_to_review:
            dispute.status = DisputeStatus.UNDER_REVIEW
            dispute.append_audit('system', 'status_changed', 'open -> under_review', now)
        dispute.updated_at = now
        self.session.commit()

        logger.info(f'[DISPUTES] {role} added {len(entries)} evidence item(s) to {case_id}')

        if role == 'customer':
            self._notify(dispute.pro_id, 'New Customer Evidence',
                         'The customer added new evidence to a dispute',
                         {'type': NotificationType.DISPUTE_UPDATE, 'caseId': case_id})
        else:
            self._notify(dispute.customer_id, 'Pro Response Added',
                         'The pro responded to your dispute',
                         {'type': NotificationType.DISPUTE_UPDATE, 'caseId': case_id})

    @service_operation('Failed to resolve dispute')
    def resolve_dispute(self, caller_id, case_id, decision, amount=None):
        """Resolve an active dispute, refunding the customer if the decision says so.

        Returns:
            dict: {'success', 'refundAmount', 'awardedAmount'}
        """
        require_caller(caller_id)

        if not self.is_admin(caller_id):
            raise PermissionDenied('Admin access required')

        if not case_id or decision not in DECISIONS:
            raise InvalidArgument(f'decision must be one of: {list(DECISIONS)}')

        partial_amount = None
        if decision == 'refund_partial':
            if amount is None:
                raise InvalidArgument('amount is required for a partial refund')
            partial_amount = parse_amount(amount)
            if partial_amount <= 0:
                raise InvalidArgument('amount must be positive')

        dispute = self._lock_dispute(case_id)
        if not dispute:
            raise NotFound('Dispute not found')

        if not dispute.is_active:
            raise FailedPrecondition('Dispute is already closed')

        payment = self.session.query(Payment).filter_by(id=dispute.payment_id).with_for_update().first()
        if not payment:
            raise NotFound('Payment not found')

        gross = quantize_amount(payment.amount_gross)
        already_refunded = refunded_so_far(self.session, payment)
        remaining = gross - already_refunded

        if decision == 'refund_full':
            refund_amount = remaining
            if refund_amount <= 0:
                raise FailedPrecondition('Payment has already been fully refunded')
        elif decision == 'refund_partial':
            if partial_amount > gross:
                raise InvalidArgument('Refund amount cannot exceed payment amount')
            if partial_amount > remaining:
                raise InvalidArgument(f'Refund amount exceeds remaining refundable amount ({remaining})')
            refund_amount = partial_amount
        else:
            refund_amount = quantize_amount(0)

        now = self.clock()
        if refund_amount > 0:
            refund = self.gateway.create_refund(
                payment_intent_id=payment.stripe_payment_intent_id,
                amount=to_minor_units(refund_amount),
                reason='requested_by_customer',
                metadata={'paymentId': payment.id, 'caseId': dispute.id, 'decision': decision},
                idempotency_key=f'dispute_{dispute.id}',
            )
            self.session.add(Refund(
                id=refund.id,
                payment_id=payment.id,
                job_id=payment.job_id,
                dispute_id=dispute.id,
                amount=refund_amount,
                currency=payment.currency,
                reason='dispute_resolution',
                requested_by=caller_id,
                created_at=now,
            ))
            payment.status = PaymentStatus.REFUNDED
            payment.total_refunded = already_refunded + refund_amount
            payment.last_refunded_at = now
            payment.updated_at = now

        dispute.status = DECISION_STATUS[decision]
        dispute.awarded_amount = refund_amount
        dispute.resolved_at = now
        dispute.updated_at = now
        dispute.append_audit('admin', 'decision_made', f'{decision}: {refund_amount}', now)
        self.session.commit()

        logger.info(f'[DISPUTES] Dispute {case_id} resolved ({decision}), refund {refund_amount}')

        customer_message, pro_message = _resolution_messages(decision, refund_amount)
        data = {'type': NotificationType.DISPUTE_RESOLVED, 'caseId': case_id, 'decision': decision}
        self._notify(dispute.customer_id, 'Dispute Resolved', customer_message, data)
        self._notify(dispute.pro_id, 'Dispute Resolved', pro_message, data)
        self._emit('dispute_resolved', caller_id, 'admin', {
            'caseId': case_id,
            'paymentId': payment.id,
            'disputeOutcome': decision,
            'refundDelta': refund_amount,
        })
        return {'success': True, 'refundAmount': refund_amount, 'awardedAmount': refund_amount}

    @service_operation('Failed to expire disputes')
    def expire_disputes(self, batch_size=100):
        """Expire disputes whose pro-response or decision deadline passed unattended.

        Returns:
            dict: {'updated': number of distinct disputes expired}
        """
        now = self.clock()
        stale = self.session.query(Dispute).filter(db.or_(
            db.and_(Dispute.status == DisputeStatus.OPEN, Dispute.deadline_pro_response <= now),
            db.and_(Dispute.status == DisputeStatus.UNDER_REVIEW, Dispute.deadline_decision <= now),
        )).order_by(Dispute.opened_at).limit(batch_size).with_for_update().all()

        for dispute in stale:
            if dispute.status == DisputeStatus.OPEN:
                note = 'Pro response deadline passed'
            else:
                note = 'Decision deadline passed'
            dispute.status = DisputeStatus.EXPIRED
            dispute.updated_at = now
            dispute.append_audit('system', 'auto_expired', note, now)

        self.session.commit()
        if stale:
            logger.info(f'[DISPUTES] Expired {len(stale)} stale disputes')
        return {'updated': len(stale)}

    @service_operation('Failed to send moderation reminders')
    def remind_moderation(self, limit=50):
        """Warn admins about under-review disputes whose decision deadline is near or passed.

        Returns:
            dict: {'reminded'}
        """
        now = self.clock()
        due = self.session.query(Dispute).filter(
            Dispute.status == DisputeStatus.UNDER_REVIEW,
            Dispute.deadline_decision <= now + self.lookahead,
        ).order_by(Dispute.deadline_decision).limit(limit).all()
        reminders = [(d.id, d.job_id, d.deadline_decision) for d in due]
        self.session.rollback()

        for case_id, job_id, deadline in reminders:
            overdue = deadline <= now
            logger.warning(
                f'[DISPUTES] Dispute {case_id} on job {job_id} needs a decision '
                f'({"overdue since" if overdue else "due"} {deadline.isoformat()})'
            )
            send_push_safe(
                self.notifier.notify_admins,
                'Dispute Needs a Decision',
                f'Decision deadline for case {case_id} is {deadline.strftime("%Y-%m-%d %H:%M")} UTC',
                {'type': NotificationType.MODERATION_REMINDER, 'caseId': case_id},
            )

        return {'reminded': len(reminders)}

    @service_operation('Failed to load dispute')
    def get_dispute(self, caller_id, case_id):
        require_caller(caller_id)
        dispute = self.session.get(Dispute, case_id)
        if not dispute:
            raise NotFound('Dispute not found')
        if caller_id not in (dispute.customer_id, dispute.pro_id) and not self.is_admin(caller_id):
            raise PermissionDenied('Access denied')
        return dispute.to_dict()

    @service_operation('Failed to list disputes')
    def list_disputes(self, caller_id, status=None):
        require_caller(caller_id)
        query = self.session.query(Dispute)
        if not self.is_admin(caller_id):
            query = query.filter(db.or_(Dispute.customer_id == caller_id, Dispute.pro_id == caller_id))
        if status:
            query = query.filter(Dispute.status == status)
        return [d.to_dict() for d in query.order_by(Dispute.opened_at.desc()).all()]
