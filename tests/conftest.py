"""
Pytest configuration and fixtures for testing the escrow and dispute API.
"""

import itertools
import json
import os
import sys
from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import jwt
import pytest
from faker import Faker
from sqlalchemy.exc import OperationalError

# Add the parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from homeservices import create_app, db
from homeservices.models import Dispute, Job, Payment, PaymentStatus, User
from homeservices.services.stripe_service import calculate_fees
from homeservices.utils.errors import InvalidArgument

fake = Faker()

JWT_SECRET = 'test-secret-key-for-testing'
NOW = datetime(2026, 3, 2, 12, 0, 0)
VALID_SIGNATURE = 't=1,v1=valid'


class FrozenClock:
    """Settable replacement for datetime.utcnow."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeGateway:
    """In-memory payment processor that records every call."""

    def __init__(self, platform_fee_percent=12.0):
        self.platform_fee_percent = platform_fee_percent
        self.calls = []
        self.error = None
        self._ids = itertools.count(1)

    def _record(self, name, **params):
        if self.error is not None:
            raise self.error
        self.calls.append((name, params))
        return next(self._ids)

    def calls_to(self, name):
        return [params for call, params in self.calls if call == name]

    def calculate_fees(self, amount_gross):
        return calculate_fees(amount_gross, self.platform_fee_percent)

    def create_payment_intent(self, amount, currency, connected_account_id=None, metadata=None):
        n = self._record('create_payment_intent', amount=amount, currency=currency,
                         connected_account_id=connected_account_id, metadata=metadata)
        return SimpleNamespace(id=f'pi_test_{n}', client_secret=f'pi_test_{n}_secret_{n}')

    def create_transfer(self, amount, currency, destination, transfer_group=None,
                        metadata=None, idempotency_key=None):
        n = self._record('create_transfer', amount=amount, currency=currency, destination=destination,
                         transfer_group=transfer_group, metadata=metadata, idempotency_key=idempotency_key)
        return SimpleNamespace(id=f'tr_test_{n}')

    def create_refund(self, payment_intent_id, amount, reason='requested_by_customer',
                      metadata=None, idempotency_key=None):
        n = self._record('create_refund', payment_intent_id=payment_intent_id, amount=amount,
                         reason=reason, metadata=metadata, idempotency_key=idempotency_key)
        return SimpleNamespace(id=f're_test_{n}')

    def create_connect_account(self):
        n = self._record('create_connect_account')
        return SimpleNamespace(id=f'acct_test_{n}')

    def create_account_link(self, account_id, refresh_url, return_url):
        self._record('create_account_link', account_id=account_id,
                     refresh_url=refresh_url, return_url=return_url)
        return SimpleNamespace(url=f'https://connect.stripe.test/setup/{account_id}')

    def construct_event(self, payload, signature):
        if signature != VALID_SIGNATURE:
            raise InvalidArgument('Invalid signature')
        return json.loads(payload)


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.admin_messages = []

    def notify(self, recipient_id, title, body, data=None):
        self.sent.append({'to': recipient_id, 'title': title, 'body': body, 'data': data or {}})
        return True

    def notify_admins(self, title, body, data=None):
        self.admin_messages.append({'title': title, 'body': body, 'data': data or {}})
        return 1


class RecordingAnalytics:
    def __init__(self):
        self.events = []

    def log_server_event(self, name, uid=None, role=None, props=None, request=None):
        self.events.append({'name': name, 'uid': uid, 'role': role, 'props': props or {}})
        return True

    def names(self):
        return [e['name'] for e in self.events]


class ExplodingSink:
    """Sink whose every method raises, to prove sinks never block a transition."""

    def __getattr__(self, name):
        def explode(*args, **kwargs):
            raise RuntimeError(f'{name} is down')
        return explode


class BrokenStore:
    """Session stand-in whose queries fail like a dropped database connection."""

    def __init__(self):
        self.rolled_back = False

    def query(self, *args, **kwargs):
        raise OperationalError('SELECT', {}, Exception('server closed the connection unexpectedly'))

    def rollback(self):
        self.rolled_back = True


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    os.environ['FLASK_ENV'] = 'testing'

    app = create_app('testing', JWT_SECRET_KEY=JWT_SECRET, ADMIN_EMAILS=['ops@homeservices.test'])

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client for each test function."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create a fresh database session for each test."""
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        yield db.session
        db.session.rollback()


@pytest.fixture
def gateway(app):
    """Fake processor installed as the app's payment gateway."""
    fake_gateway = FakeGateway(platform_fee_percent=app.config['PLATFORM_FEE_PERCENT'])
    previous = app.extensions['payment_gateway']
    app.extensions['payment_gateway'] = fake_gateway
    yield fake_gateway
    app.extensions['payment_gateway'] = previous


@pytest.fixture
def clock(app):
    """Frozen clock installed as the app's clock."""
    frozen = FrozenClock()
    previous = app.extensions['clock']
    app.extensions['clock'] = frozen
    yield frozen
    app.extensions['clock'] = previous


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def analytics():
    return RecordingAnalytics()


def make_token(user_id, secret=JWT_SECRET, expires_in=timedelta(hours=1)):
    payload = {'user_id': user_id, 'exp': datetime.utcnow() + expires_in}
    return jwt.encode(payload, secret, algorithm='HS256')


def auth_header(user_id):
    return {'Authorization': f'Bearer {make_token(user_id)}'}


def _create_user(**overrides):
    """Helper to create a user with sensible defaults."""
    data = {
        'username': fake.user_name() + fake.pystr(min_chars=4, max_chars=6),
        'email': fake.unique.email(),
        'first_name': fake.first_name(),
        'last_name': fake.last_name(),
        'role': 'customer',
    }
    data.update(overrides)
    user = User(**data)
    db.session.add(user)
    db.session.commit()
    return {
        'id': user.id,
        'username': user.username,
        'email': user.email,
        'first_name': user.first_name,
        'role': user.role,
        'stripe_account_id': user.stripe_account_id,
    }


def _create_job(customer_id, pro_id=None, **overrides):
    data = {
        'id': f"job_{fake.hexify(text='^' * 10)}",
        'title': fake.sentence(nb_words=4),
        'customer_id': customer_id,
        'assigned_pro_id': pro_id,
        'status': 'open',
        'created_at': NOW - timedelta(days=2),
        'updated_at': NOW - timedelta(days=2),
    }
    data.update(overrides)
    job = Job(**data)
    db.session.add(job)
    db.session.commit()
    return {
        'id': job.id,
        'customer_id': job.customer_id,
        'assigned_pro_id': job.assigned_pro_id,
    }


def _create_payment(job, status=PaymentStatus.CAPTURED, amount='100.00', captured_at=None,
                    escrow_hold_until=None, connected_account_id='acct_pro_test', **overrides):
    """Helper to create a payment for a job, captured 30 minutes before NOW by default."""
    intent_id = f"pi_{fake.hexify(text='^' * 14)}"
    if status != PaymentStatus.PENDING and captured_at is None:
        captured_at = NOW - timedelta(minutes=30)
    data = {
        'id': intent_id,
        'job_id': job['id'],
        'customer_id': job['customer_id'],
        'connected_account_id': connected_account_id,
        'amount_gross': Decimal(amount),
        'currency': 'eur',
        'status': status,
        'total_refunded': Decimal('0.00'),
        'stripe_payment_intent_id': intent_id,
        'stripe_charge_id': f'ch_{intent_id[3:]}' if captured_at else None,
        'captured_at': captured_at,
        'escrow_hold_until': escrow_hold_until or (captured_at or NOW) + timedelta(hours=24),
        'created_at': NOW - timedelta(hours=1),
        'updated_at': NOW - timedelta(hours=1),
    }
    data.update(overrides)
    payment = Payment(**data)
    db.session.add(payment)
    db.session.commit()
    return {
        'id': payment.id,
        'job_id': payment.job_id,
        'customer_id': payment.customer_id,
        'stripe_charge_id': payment.stripe_charge_id,
        'amount_gross': payment.amount_gross,
    }


@pytest.fixture
def customer(db_session):
    """Create a customer."""
    return _create_user(role='customer')


@pytest.fixture
def pro(db_session):
    """Create a pro with a connected account."""
    return _create_user(role='pro', stripe_account_id='acct_pro_test')


@pytest.fixture
def admin(db_session):
    """Create an admin user."""
    return _create_user(role='admin', is_admin=True)


@pytest.fixture
def job(db_session, customer, pro):
    """Create a job booked by the customer and assigned to the pro."""
    return _create_job(customer['id'], pro['id'], status='assigned')


@pytest.fixture
def captured_payment(db_session, job):
    """A 100.00 EUR payment captured 30 minutes ago, still inside the escrow hold."""
    return _create_payment(job)


def _create_dispute(payment, pro_id, status='open', opened_at=NOW, pro_response=None, **overrides):
    """Helper to create a dispute opened at ``opened_at`` with the default 24h/48h deadlines."""
    data = {
        'job_id': payment['job_id'],
        'payment_id': payment['id'],
        'customer_id': payment['customer_id'],
        'pro_id': pro_id,
        'reason': 'poor_quality',
        'description': fake.paragraph(),
        'requested_amount': Decimal('40.00'),
        'evidence': [],
        'pro_response': pro_response or [],
        'audit': [],
        'status': status,
        'deadline_pro_response': opened_at + timedelta(hours=24),
        'deadline_decision': opened_at + timedelta(hours=48),
        'opened_at': opened_at,
        'updated_at': opened_at,
    }
    data.update(overrides)
    dispute = Dispute(**data)
    db.session.add(dispute)
    db.session.commit()
    return {'id': dispute.id, 'job_id': dispute.job_id, 'payment_id': dispute.payment_id}
