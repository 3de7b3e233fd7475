"""Payment routes for the escrow system."""

from flask import Blueprint, request, jsonify, current_app

from homeservices.services import get_escrow_service
from homeservices.utils.auth import token_required
from homeservices.utils.errors import InvalidArgument
from homeservices.utils.money import as_float

payments_bp = Blueprint('payments', __name__)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidArgument('No data provided')
    return data


@payments_bp.route('/intents', methods=['POST'])
@token_required
def create_payment_intent(current_user_id):
    """Create a payment intent to pay for a job upfront (escrow).

    Body:
        jobId: str
        amount: float - Amount in major units (euros)
        currency: str - Optional, defaults to 'eur'
        connectedAccountId: str - Optional, the pro's connected account

    Returns:
        paymentId, clientSecret
    """
    data = _json_body()
    result = get_escrow_service().create_payment_intent(
        current_user_id,
        job_id=data.get('jobId'),
        amount=data.get('amount'),
        currency=data.get('currency') or 'eur',
        connected_account_id=data.get('connectedAccountId'),
    )
    return jsonify(result), 201


@payments_bp.route('/<payment_id>/release', methods=['POST'])
@token_required
def release_payment(current_user_id, payment_id):
    """Release escrowed funds to the pro. Only the paying customer can release early."""
    result = get_escrow_service().release_transfer(current_user_id, payment_id, manual_release=True)
    return jsonify({
        'transferId': result['transferId'],
        'amountNet': as_float(result['amountNet']),
        'platformFee': as_float(result['platformFee']),
    }), 200


@payments_bp.route('/<payment_id>/refunds', methods=['POST'])
@token_required
def refund_payment(current_user_id, payment_id):
    """Refund part of a captured payment.

    Body:
        refundAmount: float
        reason: str - duplicate, fraudulent or requested_by_customer
    """
    data = _json_body()
    result = get_escrow_service().partial_refund(
        current_user_id,
        payment_id,
        refund_amount=data.get('refundAmount'),
        reason=data.get('reason') or 'requested_by_customer',
    )
    return jsonify({
        'refundId': result['refundId'],
        'amount': as_float(result['amount']),
        'currency': result['currency'],
    }), 201


@payments_bp.route('/<payment_id>', methods=['GET'])
@token_required
def get_payment(current_user_id, payment_id):
    return jsonify({'payment': get_escrow_service().get_payment(current_user_id, payment_id)}), 200


@payments_bp.route('', methods=['GET'])
@token_required
def list_payments(current_user_id):
    """List payments where the caller is the customer or the pro."""
    payments = get_escrow_service().list_payments(current_user_id, status=request.args.get('status'))
    return jsonify({'payments': payments, 'total': len(payments)}), 200


@payments_bp.route('/connect/onboarding', methods=['POST'])
@token_required
def connect_onboarding(current_user_id):
    """Start (or resume) payout onboarding for a pro."""
    data = _json_body()
    result = get_escrow_service().create_connect_onboarding(
        current_user_id,
        refresh_url=data.get('refreshUrl'),
        return_url=data.get('returnUrl'),
    )
    return jsonify(result), 200


@payments_bp.route('/webhook', methods=['POST'])
def stripe_webhook():
    """Handle Stripe webhooks.

    Handler failures surface as 5xx so Stripe retries the delivery;
    every handler is idempotent.
    """
    gateway = current_app.extensions['payment_gateway']
    event = gateway.construct_event(request.get_data(), request.headers.get('Stripe-Signature'))

    current_app.logger.info(f"Stripe webhook received: {event.get('type')} ({event.get('id')})")
    result = get_escrow_service().dispatch_webhook(event)

    return jsonify({'received': True, **result}), 200


@payments_bp.route('/config', methods=['GET'])
def get_stripe_config():
    """Get Stripe public configuration."""
    return jsonify({
        'publishable_key': current_app.config.get('STRIPE_PUBLISHABLE_KEY'),
        'platform_fee_percent': current_app.config['PLATFORM_FEE_PERCENT'],
    }), 200
