"""Escrow engine: payment intents, capture, release to the pro and refunds.

Every state transition follows the same shape: lock the payment row
(``with_for_update``), validate against the freshly read state, call Stripe,
then write and commit. Local state is only written after Stripe confirmed,
so a processor failure leaves the ledger untouched.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from homeservices import db
from homeservices.models import (
    Dispute, DisputeStatus, Job, Payment, PaymentStatus, Refund, Transfer, User,
)
from homeservices.services.analytics import AnalyticsSink
from homeservices.services.webhook_events import (
    AccountUpdated, ChargeRefunded, PaymentIntentSucceeded, TransferCreated, parse_event,
)
from homeservices.utils.errors import (
    FailedPrecondition, InvalidArgument, NotFound, PermissionDenied, ServiceError,
    require_caller, service_operation,
)
from homeservices.utils.money import from_minor_units, quantize_amount, to_minor_units
from homeservices.utils.user_helpers import send_push_safe

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = 'eur'
MIN_AMOUNT = Decimal('0.50')
REFUND_REASONS = ('duplicate', 'fraudulent', 'requested_by_customer')
SYSTEM_ACTOR = 'system'


def parse_amount(value, field='amount'):
    try:
        return quantize_amount(value)
    except ValueError:
        raise InvalidArgument(f'{field} must be a number')


def refunded_so_far(session, payment):
    """Amount already refunded: the webhook total or the sum of refund records, whichever is larger."""
    recorded = Refund.total_for_payment(session, payment.id)
    return max(quantize_amount(payment.total_refunded or 0), recorded)


class EscrowService:
    """Owns the Payment lifecycle: pending -> captured -> transferred / refunded."""

    def __init__(self, gateway, analytics=None, is_admin=None, clock=None,
                 session=None, escrow_hold_hours=24):
        self.session = session or db.session
        self.gateway = gateway
        self.analytics = analytics or AnalyticsSink(self.session)
        self.is_admin = is_admin or (lambda user_id: False)
        self.clock = clock or datetime.utcnow
        self.escrow_hold = timedelta(hours=escrow_hold_hours)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _emit(self, name, uid, role, props):
        send_push_safe(self.analytics.log_server_event, name, uid=uid, role=role, props=props)

    def _lock_payment(self, payment_id):
        return self.session.query(Payment).filter_by(id=payment_id).with_for_update().first()

    def _resolve_pro_id(self, payment):
        if payment.pro_id:
            return payment.pro_id
        job = self.session.get(Job, payment.job_id)
        if not job:
            logger.warning(f'[ESCROW] Job {payment.job_id} not found while resolving pro for {payment.id}')
            return None
        return job.assigned_pro_id

    # ------------------------------------------------------------------
    # Payment intents
    # ------------------------------------------------------------------

    @service_operation('Failed to create payment intent')
    def create_payment_intent(self, caller_id, job_id, amount, currency=DEFAULT_CURRENCY,
                              connected_account_id=None):
        """Create a PaymentIntent for a job and record a pending payment.

        Returns:
            dict: {'paymentId', 'clientSecret'}
        """
        require_caller(caller_id)

        if not job_id or amount is None:
            raise InvalidArgument('jobId and amount are required')

        amount = parse_amount(amount)
        if amount < MIN_AMOUNT:
            raise InvalidArgument('Amount must be at least 0.50')

        currency = currency or DEFAULT_CURRENCY
        if not isinstance(currency, str):
            raise InvalidArgument('currency must be a 3-letter ISO code')
        currency = currency.lower()
        if len(currency) != 3 or not currency.isalpha():
            raise InvalidArgument('currency must be a 3-letter ISO code')

        job = self.session.get(Job, job_id)
        if not job:
            raise NotFound('Job not found')

        if job.customer_id != caller_id:
            raise PermissionDenied('Only job customer can create payment')

        intent = self.gateway.create_payment_intent(
            amount=to_minor_units(amount),
            currency=currency,
            connected_account_id=connected_account_id,
            metadata={'jobId': job_id, 'customerUid': caller_id},
        )

        now = self.clock()
        payment = Payment(
            id=intent.id,
            job_id=job_id,
            customer_id=caller_id,
            connected_account_id=connected_account_id,
            amount_gross=amount,
            currency=currency,
            status=PaymentStatus.PENDING,
            escrow_hold_until=now + self.escrow_hold,
            stripe_payment_intent_id=intent.id,
            total_refunded=Decimal('0.00'),
            created_at=now,
            updated_at=now,
        )
        self.session.add(payment)
        self.session.commit()

        logger.info(f'[ESCROW] Payment {intent.id} created for job {job_id}: {amount} {currency}')
        return {'paymentId': intent.id, 'clientSecret': intent.client_secret}

    # ------------------------------------------------------------------
    # Escrow release
    # ------------------------------------------------------------------

    @service_operation('Failed to release transfer')
    def release_transfer(self, caller_id, payment_id, manual_release=False):
        """Release escrowed funds to the pro's connected account.

        A manual release must come from the payment's customer. The automatic
        path (``caller_id`` None for the scheduler) only runs once the escrow
        hold has expired.

        Returns:
            dict: {'transferId', 'amountNet', 'platformFee'}
        """
        if manual_release:
            require_caller(caller_id)

        if not payment_id:
            raise InvalidArgument('paymentId is required')

        payment = self._lock_payment(payment_id)
        if not payment:
            raise NotFound('Payment not found')

        if manual_release and payment.customer_id != caller_id:
            raise PermissionDenied('Only customer can manually release payment')

        if payment.status == PaymentStatus.TRANSFERRED:
            raise FailedPrecondition('Payment already transferred')

        if payment.status != PaymentStatus.CAPTURED:
            raise FailedPrecondition('Payment must be captured before transfer')

        if not payment.connected_account_id:
            raise FailedPrecondition('No connected account for transfer')

        now = self.clock()
        if not manual_release and payment.escrow_hold_until and now < payment.escrow_hold_until:
            raise FailedPrecondition('Escrow hold period has not expired')

        active_dispute = self.session.query(Dispute.id).filter(
            Dispute.payment_id == payment.id,
            Dispute.status.in_(DisputeStatus.ACTIVE),
        ).first()
        if active_dispute:
            raise FailedPrecondition('Payment is held by an active dispute')

        releasable = quantize_amount(payment.amount_gross) - refunded_so_far(self.session, payment)
        if releasable <= 0:
            raise FailedPrecondition('Payment has been fully refunded')

        platform_fee, amount_net = self.gateway.calculate_fees(releasable)
        pro_id = self._resolve_pro_id(payment)

        transfer = self.gateway.create_transfer(
            amount=to_minor_units(amount_net),
            currency=payment.currency,
            destination=payment.connected_account_id,
            transfer_group=f'job_{payment.job_id}',
            metadata={
                'paymentId': payment.id,
                'jobId': payment.job_id,
                'platformFee': str(platform_fee),
                'autoRelease': 'false' if manual_release else 'true',
            },
            idempotency_key=f'transfer_{payment.id}',
        )

        self.session.add(Transfer(
            id=transfer.id,
            payment_id=payment.id,
            job_id=payment.job_id,
            pro_id=pro_id,
            customer_id=payment.customer_id,
            connected_account_id=payment.connected_account_id,
            amount_gross=payment.amount_gross,
            amount_net=amount_net,
            platform_fee=platform_fee,
            currency=payment.currency,
            manual_release=bool(manual_release),
            released_by=str(caller_id) if manual_release else SYSTEM_ACTOR,
            status='pending',
            created_at=now,
        ))

        payment.status = PaymentStatus.TRANSFERRED
        payment.transfer_id = transfer.id
        payment.transferred_at = now
        payment.platform_fee = platform_fee
        payment.updated_at = now
        if pro_id:
            payment.pro_id = pro_id

        self.session.commit()

        logger.info(f'[ESCROW] Payment {payment_id} released: transfer {transfer.id}, net {amount_net}')
        return {'transferId': transfer.id, 'amountNet': amount_net, 'platformFee': platform_fee}

    @service_operation('Failed to release due payments')
    def release_due_payments(self, limit=50):
        """Automatically release captured payments whose escrow hold expired.

        One failing payment never stops the sweep.

        Returns:
            dict: {'released', 'skipped', 'failed'}
        """
        now = self.clock()
        due_ids = [row.id for row in self.session.query(Payment.id).filter(
            Payment.status == PaymentStatus.CAPTURED,
            Payment.escrow_hold_until <= now,
            Payment.connected_account_id.isnot(None),
        ).order_by(Payment.escrow_hold_until).limit(limit).all()]
        self.session.rollback()

        if not due_ids:
            logger.info('[ESCROW] No payments eligible for automatic release')
            return {'released': 0, 'skipped': 0, 'failed': 0}

        logger.info(f'[ESCROW] Found {len(due_ids)} payments eligible for release')
        released = skipped = failed = 0
        for payment_id in due_ids:
            try:
                self.release_transfer(None, payment_id, manual_release=False)
                released += 1
            except FailedPrecondition as e:
                skipped += 1
                logger.info(f'[ESCROW] Skipping payment {payment_id}: {e.message}')
            except ServiceError as e:
                failed += 1
                logger.error(f'[ESCROW] Failed to release payment {payment_id}: {e.kind} {e.message}')

        result = {'released': released, 'skipped': skipped, 'failed': failed}
        logger.info(f'[ESCROW] Automatic release completed: {result}')
        return result

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    @service_operation('Failed to create partial refund')
    def partial_refund(self, caller_id, payment_id, refund_amount, reason='requested_by_customer'):
        """Refund part (or all) of a captured payment.

        The refund is recorded locally; ``total_refunded`` is left to the
        ``charge.refunded`` webhook.

        Returns:
            dict: {'refundId', 'amount', 'currency'}
        """
        require_caller(caller_id)

        if not payment_id or refund_amount is None:
            raise InvalidArgument('paymentId and refundAmount are required')

        amount = parse_amount(refund_amount, 'refundAmount')
        if amount <= 0:
            raise InvalidArgument('Refund amount must be positive')

        reason = reason or 'requested_by_customer'
        if reason not in REFUND_REASONS:
            raise InvalidArgument(f'Invalid reason. Must be one of: {list(REFUND_REASONS)}')

        payment = self._lock_payment(payment_id)
        if not payment:
            raise NotFound('Payment not found')

        if payment.customer_id != caller_id and not self.is_admin(caller_id):
            raise PermissionDenied('Only customer or admin can request refund')

        if payment.status != PaymentStatus.CAPTURED:
            raise FailedPrecondition('Payment must be captured for refund')

        gross = quantize_amount(payment.amount_gross)
        if amount > gross:
            raise InvalidArgument('Refund amount cannot exceed payment amount')

        remaining = gross - refunded_so_far(self.session, payment)
        if amount > remaining:
            raise InvalidArgument(f'Refund amount exceeds remaining refundable amount ({remaining})')

        refund = self.gateway.create_refund(
            payment_intent_id=payment.stripe_payment_intent_id,
            amount=to_minor_units(amount),
            reason=reason,
            metadata={'paymentId': payment.id, 'jobId': payment.job_id, 'requestedBy': caller_id},
        )

        self.session.add(Refund(
            id=refund.id,
            payment_id=payment.id,
            job_id=payment.job_id,
            amount=amount,
            currency=payment.currency,
            reason=reason,
            requested_by=caller_id,
            created_at=self.clock(),
        ))
        self.session.commit()

        logger.info(f'[ESCROW] Refund {refund.id} of {amount} recorded for payment {payment_id}')
        return {'refundId': refund.id, 'amount': amount, 'currency': payment.currency}

    # ------------------------------------------------------------------
    # Webhooks (idempotent: unknown records and repeated events are no-ops)
    # ------------------------------------------------------------------

    @service_operation('Failed to handle payment_intent.succeeded')
    def handle_payment_intent_succeeded(self, event: PaymentIntentSucceeded):
        payment = self._lock_payment(event.intent_id)
        if not payment:
            logger.warning(f'[ESCROW] Payment not found for succeeded PaymentIntent {event.intent_id}')
            return False

        if payment.status != PaymentStatus.PENDING:
            self.session.rollback()
            logger.info(f'[ESCROW] Payment {payment.id} already {payment.status}, ignoring duplicate capture')
            return False

        now = self.clock()
        payment.status = PaymentStatus.CAPTURED
        payment.captured_at = now
        payment.stripe_charge_id = event.latest_charge
        payment.escrow_hold_until = now + self.escrow_hold
        payment.updated_at = now

        # Partial update - other subsystems write to the same job row
        self.session.query(Job).filter_by(id=payment.job_id).update(
            {'status': 'assigned', 'updated_at': now}, synchronize_session=False
        )
        self.session.commit()

        self._emit('payment_captured', payment.customer_id, 'customer', {
            'paymentId': payment.id,
            'jobId': payment.job_id,
            'amountEur': payment.amount_gross,
        })
        logger.info(f'[ESCROW] Payment {payment.id} captured')
        return True

    @service_operation('Failed to handle transfer.created')
    def handle_transfer_created(self, event: TransferCreated):
        transfer = self.session.query(Transfer).filter_by(id=event.transfer_id).with_for_update().first()
        if not transfer:
            logger.info(f'[ESCROW] No transfer record for {event.transfer_id}, ignoring')
            return False

        if transfer.status == 'completed':
            self.session.rollback()
            return False

        transfer.status = 'completed'
        transfer.completed_at = self.clock()
        self.session.commit()

        self._emit('payment_released', transfer.pro_id, 'pro', {
            'transferId': transfer.id,
            'paymentId': transfer.payment_id,
            'jobId': transfer.job_id,
            'amountNet': transfer.amount_net,
        })
        logger.info(f'[ESCROW] Transfer {transfer.id} completed')
        return True

    @service_operation('Failed to handle charge.refunded')
    def handle_charge_refunded(self, event: ChargeRefunded):
        payment = self.session.query(Payment).filter_by(
            stripe_charge_id=event.charge_id
        ).with_for_update().first()
        if not payment:
            logger.warning(f'[ESCROW] Payment not found for refunded charge {event.charge_id}')
            return False

        total_refunded = from_minor_units(event.amount_refunded)
        previous = quantize_amount(payment.total_refunded or 0)
        # Cumulative totals only grow; equal or smaller means duplicate or stale delivery
        if total_refunded <= previous:
            self.session.rollback()
            return False

        now = self.clock()
        payment.total_refunded = total_refunded
        payment.last_refunded_at = now
        payment.updated_at = now
        self.session.commit()

        self._emit('payment_refunded', payment.customer_id, 'customer', {
            'paymentId': payment.id,
            'jobId': payment.job_id,
            'totalRefunded': total_refunded,
            'refundDelta': total_refunded - previous,
            'amountEur': payment.amount_gross,
        })
        logger.info(f'[ESCROW] Payment {payment.id} refund total now {total_refunded}')
        return True

    @service_operation('Failed to handle account.updated')
    def handle_account_updated(self, event: AccountUpdated):
        user = self.session.query(User).filter_by(stripe_account_id=event.account_id).with_for_update().first()
        if not user:
            logger.warning(f'[ESCROW] User not found for account update {event.account_id}')
            return False

        user.stripe_charges_enabled = event.charges_enabled
        user.stripe_payouts_enabled = event.payouts_enabled
        user.stripe_details_submitted = event.details_submitted
        user.updated_at = self.clock()
        self.session.commit()

        self._emit('stripe_account_updated', user.id, user.role, {
            'chargesEnabled': event.charges_enabled,
            'payoutsEnabled': event.payouts_enabled,
            'detailsSubmitted': event.details_submitted,
        })
        return True

    def dispatch_webhook(self, raw_event):
        """Route a verified Stripe event to its handler.

        Returns:
            dict: {'status': 'processed' | 'skipped' | 'ignored', 'type': event type}
        """
        event = parse_event(raw_event)
        event_type = raw_event.get('type')
        handlers = {
            PaymentIntentSucceeded: self.handle_payment_intent_succeeded,
            TransferCreated: self.handle_transfer_created,
            ChargeRefunded: self.handle_charge_refunded,
            AccountUpdated: self.handle_account_updated,
        }
        handler = handlers.get(type(event))
        if handler is None:
            logger.info(f'[ESCROW] Unhandled webhook event type {event_type}')
            return {'status': 'ignored', 'type': event_type}

        handled = handler(event)
        return {'status': 'processed' if handled else 'skipped', 'type': event_type}

    # ------------------------------------------------------------------
    # Connect onboarding
    # ------------------------------------------------------------------

    @service_operation('Failed to create onboarding link')
    def create_connect_onboarding(self, caller_id, refresh_url, return_url):
        """Create (or reuse) the caller's connected account and return an onboarding link."""
        require_caller(caller_id)
        if not refresh_url or not return_url:
            raise InvalidArgument('refreshUrl and returnUrl are required')

        user = self.session.get(User, caller_id)
        if not user:
            raise NotFound('User not found')

        if not user.stripe_account_id:
            account = self.gateway.create_connect_account()
            user.stripe_account_id = account.id
            self.session.commit()

        link = self.gateway.create_account_link(user.stripe_account_id, refresh_url, return_url)
        return {'accountId': user.stripe_account_id, 'url': link.url}

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    @service_operation('Failed to load payment')
    def get_payment(self, caller_id, payment_id):
        require_caller(caller_id)
        payment = self.session.get(Payment, payment_id)
        if not payment:
            raise NotFound('Payment not found')

        job = self.session.get(Job, payment.job_id)
        involved = caller_id in (payment.customer_id, payment.pro_id) or (
            job is not None and job.assigned_pro_id == caller_id
        )
        if not involved and not self.is_admin(caller_id):
            raise PermissionDenied('Access denied')

        result = payment.to_dict()
        transfer = self.session.query(Transfer).filter_by(payment_id=payment.id).first()
        result['transfer'] = transfer.to_dict() if transfer else None
        result['refunds'] = [r.to_dict() for r in self.session.query(Refund).filter_by(
            payment_id=payment.id
        ).order_by(Refund.created_at).all()]
        return result

    @service_operation('Failed to list payments')
    def list_payments(self, caller_id, status=None):
        require_caller(caller_id)
        query = self.session.query(Payment).filter(
            db.or_(Payment.customer_id == caller_id, Payment.pro_id == caller_id)
        )
        if status:
            query = query.filter(Payment.status == status)
        return [p.to_dict() for p in query.order_by(Payment.created_at.desc()).all()]
