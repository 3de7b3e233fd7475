"""Dispute routes for customer complaints against escrowed payments."""

from flask import Blueprint, request, jsonify

from homeservices.models import Dispute
from homeservices.services import get_dispute_service
from homeservices.utils.auth import token_required
from homeservices.utils.errors import InvalidArgument
from homeservices.utils.money import as_float

disputes_bp = Blueprint('disputes', __name__)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidArgument('No data provided')
    return data


@disputes_bp.route('/reasons', methods=['GET'])
@token_required
def get_dispute_reasons(current_user_id):
    """Get list of valid dispute reasons with labels."""
    reasons = [
        {'value': r, 'label': Dispute.REASON_LABELS.get(r, r)}
        for r in Dispute.VALID_REASONS
    ]
    return jsonify({'reasons': reasons}), 200


@disputes_bp.route('', methods=['POST'])
@token_required
def create_dispute(current_user_id):
    """Open a dispute against a captured payment.

    Body:
        jobId: str
        paymentId: str
        reason: str - One of VALID_REASONS
        description: str
        requestedAmount: float
        mediaPaths: list[str] - Optional uploaded evidence
    """
    data = _json_body()
    result = get_dispute_service().open_dispute(
        current_user_id,
        job_id=data.get('jobId'),
        payment_id=data.get('paymentId'),
        reason=data.get('reason'),
        description=data.get('description'),
        requested_amount=data.get('requestedAmount'),
        media_paths=data.get('mediaPaths'),
    )
    return jsonify(result), 201


@disputes_bp.route('', methods=['GET'])
@token_required
def get_disputes(current_user_id):
    """Get disputes involving the current user (all disputes for admins)."""
    disputes = get_dispute_service().list_disputes(current_user_id, status=request.args.get('status'))
    return jsonify({'disputes': disputes, 'total': len(disputes)}), 200


@disputes_bp.route('/<case_id>', methods=['GET'])
@token_required
def get_dispute(current_user_id, case_id):
    return jsonify({'dispute': get_dispute_service().get_dispute(current_user_id, case_id)}), 200


@disputes_bp.route('/<case_id>/evidence', methods=['POST'])
@token_required
def add_evidence(current_user_id, case_id):
    """Add evidence (customer) or a response (pro) to an active dispute.

    Body:
        role: 'customer' or 'pro'
        text: str - Optional
        mediaPath: str - Optional single upload
        mediaPaths: list[str] - Optional uploads
    """
    data = _json_body()
    get_dispute_service().add_evidence(
        current_user_id,
        case_id,
        role=data.get('role'),
        text=data.get('text'),
        media_path=data.get('mediaPath'),
        media_paths=data.get('mediaPaths'),
    )
    return jsonify({'success': True}), 200


@disputes_bp.route('/<case_id>/resolve', methods=['POST'])
@token_required
def resolve_dispute(current_user_id, case_id):
    """Resolve a dispute (admin only).

    Body:
        decision: 'refund_full', 'refund_partial' or 'no_refund'
        amount: float - Required for refund_partial
    """
    data = _json_body()
    result = get_dispute_service().resolve_dispute(
        current_user_id,
        case_id,
        decision=data.get('decision'),
        amount=data.get('amount'),
    )
    return jsonify({
        'success': result['success'],
        'refundAmount': as_float(result['refundAmount']),
        'awardedAmount': as_float(result['awardedAmount']),
    }), 200
