"""
Tests for the dispute engine: opening, evidence and admin resolution.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import event
from sqlalchemy.dialects import postgresql

from conftest import NOW, ExplodingSink, _create_dispute, _create_job, _create_payment, _create_user
from homeservices.models import Dispute, DisputeStatus, Payment, PaymentStatus, Refund
from homeservices.services.disputes import DisputeService, evidence_type
from homeservices.utils.auth import is_admin_user
from homeservices.utils.errors import (
    AlreadyExists, DeadlineExceeded, FailedPrecondition, InvalidArgument, NotFound,
    PermissionDenied, Unavailable,
)

WINDOW = timedelta(days=14)


@pytest.fixture
def disputes(db_session, gateway, clock, notifier, analytics):
    return DisputeService(
        gateway=gateway,
        notifier=notifier,
        analytics=analytics,
        is_admin=is_admin_user,
        clock=clock,
        session=db_session,
    )


def _open(disputes, payment, caller_id=None, **overrides):
    params = {
        'job_id': payment['job_id'],
        'payment_id': payment['id'],
        'reason': 'poor_quality',
        'description': 'The tiles were left cracked and the grout is missing.',
        'requested_amount': '50.00',
    }
    params.update(overrides)
    return disputes.open_dispute(caller_id or payment['customer_id'], **params)


class TestEvidenceType:

    @pytest.mark.parametrize('path, expected', [
        ('uploads/case/photo.JPG', 'image'),
        ('uploads/case/photo.webp', 'image'),
        ('uploads/case/voice.m4a', 'audio'),
        ('uploads/case/invoice.pdf', 'file'),
        ('uploads/case/no_extension', 'file'),
    ])
    def test_classifies_by_extension(self, path, expected):
        assert evidence_type(path) == expected


class TestOpenDispute:
    """Tests for DisputeService.open_dispute"""

    def test_opens_dispute_and_notifies_pro(self, disputes, job, pro, notifier, analytics, db_session):
        payment = _create_payment(job, amount='120.00')

        result = _open(disputes, payment, media_paths=['disputes/a.png', 'disputes/b.mp3'])

        dispute = db_session.get(Dispute, result['caseId'])
        assert dispute.status == DisputeStatus.OPEN
        assert dispute.pro_id == pro['id']
        assert dispute.requested_amount == Decimal('50.00')
        assert dispute.deadline_pro_response == NOW + timedelta(hours=24)
        assert dispute.deadline_decision == NOW + timedelta(hours=48)
        assert [e['type'] for e in dispute.evidence] == ['image', 'audio']
        assert all(e['author'] == 'customer' for e in dispute.evidence)
        assert dispute.pro_response == []
        assert dispute.audit == []

        assert notifier.sent[0]['to'] == pro['id']
        assert notifier.sent[0]['title'] == 'New Dispute Opened'
        assert notifier.sent[0]['data']['caseId'] == result['caseId']
        assert analytics.names() == ['dispute_opened']

    def test_accepted_one_second_before_window_closes(self, disputes, job):
        payment = _create_payment(job, captured_at=NOW - WINDOW + timedelta(seconds=1))

        assert _open(disputes, payment)['caseId']

    def test_accepted_at_window_boundary(self, disputes, job):
        payment = _create_payment(job, captured_at=NOW - WINDOW)

        assert _open(disputes, payment)['caseId']

    def test_rejected_one_second_after_window(self, disputes, job, db_session):
        payment = _create_payment(job, captured_at=NOW - WINDOW - timedelta(seconds=1))

        with pytest.raises(DeadlineExceeded):
            _open(disputes, payment)

        assert db_session.query(Dispute).count() == 0

    def test_requested_amount_cannot_exceed_payment(self, disputes, captured_payment):
        with pytest.raises(InvalidArgument):
            _open(disputes, captured_payment, requested_amount='100.01')

    def test_only_paying_customer_can_open(self, disputes, captured_payment, pro):
        with pytest.raises(PermissionDenied):
            _open(disputes, captured_payment, caller_id=pro['id'])

    def test_payment_must_be_captured(self, disputes, job):
        payment = _create_payment(job, status=PaymentStatus.PENDING)

        with pytest.raises(FailedPrecondition):
            _open(disputes, payment)

    def test_payment_must_belong_to_job(self, disputes, captured_payment, customer, pro):
        other_job = _create_job(customer['id'], pro['id'])

        with pytest.raises(InvalidArgument):
            _open(disputes, captured_payment, job_id=other_job['id'])

    def test_unknown_payment(self, disputes, job, customer):
        with pytest.raises(NotFound):
            disputes.open_dispute(customer['id'], job['id'], 'pi_missing', 'no_show', 'Never came.', 10)

    @pytest.mark.parametrize('overrides', [
        {'reason': 'bad_vibes'},
        {'description': '   '},
        {'requested_amount': 0},
        {'requested_amount': None},
        {'media_paths': 'single/path.png'},
    ])
    def test_rejects_invalid_input(self, disputes, captured_payment, overrides):
        with pytest.raises(InvalidArgument):
            _open(disputes, captured_payment, **overrides)

    def test_one_active_dispute_per_job(self, disputes, captured_payment, db_session):
        _open(disputes, captured_payment)

        with pytest.raises(AlreadyExists):
            _open(disputes, captured_payment, reason='damage')

        assert db_session.query(Dispute).count() == 1

    def test_payment_row_is_locked_while_checking(self, disputes, captured_payment, db_session):
        statements = []

        def record(state):
            statements.append(str(state.statement.compile(dialect=postgresql.dialect())))

        session = db_session()
        event.listen(session, 'do_orm_execute', record)
        try:
            _open(disputes, captured_payment)
        finally:
            event.remove(session, 'do_orm_execute', record)

        locked = [s for s in statements if 'FROM payments' in s and 'FOR UPDATE' in s]
        assert locked, 'payment must be read with FOR UPDATE'

    def test_new_dispute_allowed_after_resolution(self, disputes, captured_payment, admin, db_session):
        first = _open(disputes, captured_payment)
        disputes.resolve_dispute(admin['id'], first['caseId'], 'no_refund')

        second = _open(disputes, captured_payment, reason='damage')

        assert second['caseId'] != first['caseId']


class TestAddEvidence:
    """Tests for DisputeService.add_evidence"""

    def test_customer_evidence_notifies_pro(self, disputes, captured_payment, customer, pro, notifier, db_session):
        case = _create_dispute(captured_payment, pro['id'])

        disputes.add_evidence(customer['id'], case['id'], 'customer', text='Photo of the leak attached.',
                              media_path='disputes/leak.jpg')

        dispute = db_session.get(Dispute, case['id'])
        assert [(e['author'], e['type']) for e in dispute.evidence] == [('customer', 'text'), ('customer', 'image')]
        assert dispute.status == DisputeStatus.OPEN
        assert [a['action'] for a in dispute.audit] == ['customer_evidence_added']
        assert notifier.sent[-1]['to'] == pro['id']
        assert notifier.sent[-1]['title'] == 'New Customer Evidence'

    def test_first_pro_response_moves_to_review(self, disputes, captured_payment, customer, pro, notifier, db_session):
        case = _create_dispute(captured_payment, pro['id'])

        disputes.add_evidence(pro['id'], case['id'], 'pro', text='The crack was there before I started.')
        disputes.add_evidence(pro['id'], case['id'], 'pro', media_paths=['disputes/before.png'])

        dispute = db_session.get(Dispute, case['id'])
        assert dispute.status == DisputeStatus.UNDER_REVIEW
        assert len(dispute.pro_response) == 2
        assert [a['action'] for a in dispute.audit] == [
            'pro_evidence_added', 'status_changed', 'pro_evidence_added',
        ]
        assert notifier.sent[0]['to'] == customer['id']
        assert notifier.sent[0]['title'] == 'Pro Response Added'

    def test_role_must_match_caller(self, disputes, captured_payment, pro):
        case = _create_dispute(captured_payment, pro['id'])

        with pytest.raises(PermissionDenied):
            disputes.add_evidence(pro['id'], case['id'], 'customer', text='I am the customer now')

    def test_requires_text_or_media(self, disputes, captured_payment, customer, pro):
        case = _create_dispute(captured_payment, pro['id'])

        with pytest.raises(InvalidArgument):
            disputes.add_evidence(customer['id'], case['id'], 'customer', text='  ')

    def test_invalid_role(self, disputes, captured_payment, customer, pro):
        case = _create_dispute(captured_payment, pro['id'])

        with pytest.raises(InvalidArgument):
            disputes.add_evidence(customer['id'], case['id'], 'admin', text='hello')

    @pytest.mark.parametrize('status', [DisputeStatus.RESOLVED_NO_REFUND, DisputeStatus.EXPIRED])
    def test_closed_dispute_rejects_evidence(self, disputes, captured_payment, customer, pro, status):
        case = _create_dispute(captured_payment, pro['id'], status=status)

        with pytest.raises(FailedPrecondition):
            disputes.add_evidence(customer['id'], case['id'], 'customer', text='One more thing')

    @pytest.mark.parametrize('media_path', [123, '   ', ['disputes/a.png']])
    def test_rejects_malformed_media_path(self, disputes, captured_payment, customer, pro, notifier, db_session, media_path):
        case = _create_dispute(captured_payment, pro['id'])

        with pytest.raises(InvalidArgument):
            disputes.add_evidence(customer['id'], case['id'], 'customer', text='See attached', media_path=media_path)

        assert db_session.get(Dispute, case['id']).evidence == []
        assert notifier.sent == []

    def test_unknown_dispute(self, disputes, customer):
        with pytest.raises(NotFound):
            disputes.add_evidence(customer['id'], 'missing', 'customer', text='hello')


class TestResolveDispute:
    """Tests for DisputeService.resolve_dispute"""

    def test_full_refund(self, disputes, gateway, captured_payment, customer, pro, admin, notifier, analytics, db_session):
        case = _create_dispute(captured_payment, pro['id'], status=DisputeStatus.UNDER_REVIEW)

        result = disputes.resolve_dispute(admin['id'], case['id'], 'refund_full')

        assert result == {'success': True, 'refundAmount': Decimal('100.00'), 'awardedAmount': Decimal('100.00')}

        call = gateway.calls_to('create_refund')[0]
        assert call['amount'] == 10000
        assert call['idempotency_key'] == f"dispute_{case['id']}"

        payment = db_session.get(Payment, captured_payment['id'])
        assert payment.status == PaymentStatus.REFUNDED
        assert payment.total_refunded == Decimal('100.00')

        dispute = db_session.get(Dispute, case['id'])
        assert dispute.status == DisputeStatus.RESOLVED_REFUND_FULL
        assert dispute.awarded_amount == Decimal('100.00')
        assert dispute.resolved_at == NOW
        assert dispute.audit[-1]['action'] == 'decision_made'

        refund = db_session.query(Refund).filter_by(dispute_id=case['id']).one()
        assert refund.amount == Decimal('100.00')

        assert {m['to'] for m in notifier.sent} == {customer['id'], pro['id']}
        assert notifier.sent[0]['body'] == 'Your dispute was resolved with a full refund'
        assert analytics.names() == ['dispute_resolved']

    def test_partial_refund(self, disputes, gateway, captured_payment, pro, admin, notifier, db_session):
        case = _create_dispute(captured_payment, pro['id'], status=DisputeStatus.UNDER_REVIEW)

        result = disputes.resolve_dispute(admin['id'], case['id'], 'refund_partial', amount='25')

        assert result['refundAmount'] == Decimal('25.00')
        assert gateway.calls_to('create_refund')[0]['amount'] == 2500
        assert db_session.get(Dispute, case['id']).status == DisputeStatus.RESOLVED_REFUND_PARTIAL
        assert db_session.get(Payment, captured_payment['id']).total_refunded == Decimal('25.00')
        assert '€25.00' in notifier.sent[0]['body']

    def test_no_refund(self, disputes, gateway, captured_payment, pro, admin, db_session):
        case = _create_dispute(captured_payment, pro['id'])

        result = disputes.resolve_dispute(admin['id'], case['id'], 'no_refund')

        assert result['refundAmount'] == Decimal('0.00')
        assert gateway.calls == []
        assert db_session.get(Payment, captured_payment['id']).status == PaymentStatus.CAPTURED
        assert db_session.get(Dispute, case['id']).status == DisputeStatus.RESOLVED_NO_REFUND

    def test_full_refund_after_earlier_refund_covers_remaining(self, disputes, gateway, captured_payment, pro, admin, db_session):
        db_session.add(Refund(id='re_earlier', payment_id=captured_payment['id'], job_id=captured_payment['job_id'],
                              amount=Decimal('30.00'), currency='eur', reason='requested_by_customer',
                              created_at=NOW))
        db_session.commit()
        case = _create_dispute(captured_payment, pro['id'], status=DisputeStatus.UNDER_REVIEW)

        result = disputes.resolve_dispute(admin['id'], case['id'], 'refund_full')

        assert result['refundAmount'] == Decimal('70.00')
        assert gateway.calls_to('create_refund')[0]['amount'] == 7000
        assert db_session.get(Payment, captured_payment['id']).total_refunded == Decimal('100.00')

    @pytest.mark.parametrize('amount', [None, 0, '100.01'])
    def test_partial_refund_amount_is_validated(self, disputes, gateway, captured_payment, pro, admin, amount):
        case = _create_dispute(captured_payment, pro['id'])

        with pytest.raises(InvalidArgument):
            disputes.resolve_dispute(admin['id'], case['id'], 'refund_partial', amount=amount)

        assert gateway.calls == []

    def test_unknown_decision(self, disputes, captured_payment, pro, admin):
        case = _create_dispute(captured_payment, pro['id'])

        with pytest.raises(InvalidArgument):
            disputes.resolve_dispute(admin['id'], case['id'], 'split_the_difference')

    def test_requires_admin(self, disputes, gateway, captured_payment, customer, pro):
        case = _create_dispute(captured_payment, pro['id'])

        with pytest.raises(PermissionDenied):
            disputes.resolve_dispute(customer['id'], case['id'], 'refund_full')

        assert gateway.calls == []

    def test_cannot_resolve_twice(self, disputes, gateway, captured_payment, pro, admin):
        case = _create_dispute(captured_payment, pro['id'])
        disputes.resolve_dispute(admin['id'], case['id'], 'no_refund')

        with pytest.raises(FailedPrecondition):
            disputes.resolve_dispute(admin['id'], case['id'], 'refund_full')

        assert gateway.calls == []

    def test_gateway_failure_keeps_dispute_open(self, disputes, gateway, captured_payment, pro, admin, db_session):
        case = _create_dispute(captured_payment, pro['id'], status=DisputeStatus.UNDER_REVIEW)
        gateway.error = Unavailable('Payment processor unavailable')

        with pytest.raises(Unavailable):
            disputes.resolve_dispute(admin['id'], case['id'], 'refund_full')

        assert db_session.get(Dispute, case['id']).status == DisputeStatus.UNDER_REVIEW
        assert db_session.get(Payment, captured_payment['id']).status == PaymentStatus.CAPTURED
        assert db_session.query(Refund).count() == 0

    def test_sink_failures_do_not_block_resolution(self, db_session, gateway, clock, captured_payment, pro, admin):
        disputes = DisputeService(gateway=gateway, notifier=ExplodingSink(), analytics=ExplodingSink(),
                                  is_admin=is_admin_user, clock=clock, session=db_session)
        case = _create_dispute(captured_payment, pro['id'], status=DisputeStatus.UNDER_REVIEW)

        result = disputes.resolve_dispute(admin['id'], case['id'], 'refund_full')

        assert result['success'] is True
        assert db_session.get(Dispute, case['id']).status == DisputeStatus.RESOLVED_REFUND_FULL


class TestDisputeReads:
    """Tests for get_dispute and list_disputes"""

    def test_parties_and_admin_can_read(self, disputes, captured_payment, customer, pro, admin):
        case = _create_dispute(captured_payment, pro['id'])

        for user in (customer, pro, admin):
            assert disputes.get_dispute(user['id'], case['id'])['id'] == case['id']

    def test_stranger_cannot_read(self, disputes, captured_payment, pro, db_session):
        case = _create_dispute(captured_payment, pro['id'])
        stranger = _create_user()

        with pytest.raises(PermissionDenied):
            disputes.get_dispute(stranger['id'], case['id'])

    def test_list_is_scoped_to_caller(self, disputes, captured_payment, customer, pro, admin):
        _create_dispute(captured_payment, pro['id'])
        other_customer = _create_user()
        other_job = _create_job(other_customer['id'], pro['id'])
        _create_dispute(_create_payment(other_job), pro['id'], status=DisputeStatus.EXPIRED)

        assert len(disputes.list_disputes(customer['id'])) == 1
        assert len(disputes.list_disputes(pro['id'])) == 2
        assert len(disputes.list_disputes(admin['id'])) == 2
        assert len(disputes.list_disputes(admin['id'], status=DisputeStatus.EXPIRED)) == 1
