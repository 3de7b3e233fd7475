"""Service factories bound to the current Flask app."""

from flask import current_app, has_request_context, request

from homeservices import db
from homeservices.services.analytics import AnalyticsSink
from homeservices.services.disputes import DisputeService
from homeservices.services.escrow import EscrowService
from homeservices.services.notifications import NotificationSink
from homeservices.utils.auth import is_admin_user


def _collaborators():
    app = current_app
    return {
        'gateway': app.extensions['payment_gateway'],
        'analytics': AnalyticsSink(
            db.session,
            salt=app.config['ANALYTICS_SALT'],
            request=request if has_request_context() else None,
        ),
        'is_admin': is_admin_user,
        'clock': app.extensions['clock'],
        'session': db.session,
    }


def get_escrow_service():
    return EscrowService(
        escrow_hold_hours=current_app.config['ESCROW_HOLD_HOURS'],
        **_collaborators(),
    )


def get_dispute_service():
    config = current_app.config
    return DisputeService(
        notifier=NotificationSink(db.session),
        window_hours=config['DISPUTE_WINDOW_HOURS'],
        pro_response_hours=config['DISPUTE_PRO_RESPONSE_HOURS'],
        decision_hours=config['DISPUTE_DECISION_HOURS'],
        lookahead_hours=config['MODERATION_LOOKAHEAD_HOURS'],
        **_collaborators(),
    )


__all__ = ['EscrowService', 'DisputeService', 'get_escrow_service', 'get_dispute_service']
