"""Push notification service for sending web push notifications."""

import os
import json
import logging
from pywebpush import webpush, WebPushException
from homeservices import db
from homeservices.models import PushSubscription

logger = logging.getLogger(__name__)

# VAPID keys - these should be set in environment variables
VAPID_PRIVATE_KEY = os.getenv('VAPID_PRIVATE_KEY', '')
VAPID_PUBLIC_KEY = os.getenv('VAPID_PUBLIC_KEY', '')
VAPID_CLAIMS = {
    'sub': os.getenv('VAPID_SUBJECT', 'mailto:support@homeservices.example')
}


def send_push_notification(user_id: int, title: str, body: str, data: dict = None) -> dict:
    """
    Send push notification to all devices registered for a user.

    Args:
        user_id: The user to send notification to
        title: Notification title
        body: Notification body text
        data: Extra string data for the client (type, caseId, jobId)

    Returns:
        dict with 'sent' count and 'failed' count
    """
    logger.info(f'[PUSH] Sending to user {user_id}: {title}')

    if not VAPID_PRIVATE_KEY or not VAPID_PUBLIC_KEY:
        logger.warning('[PUSH] VAPID keys not configured - skipping push notification')
        return {'sent': 0, 'failed': 0, 'error': 'VAPID keys not configured'}

    subscriptions = PushSubscription.query.filter_by(
        user_id=user_id,
        is_active=True
    ).all()

    if not subscriptions:
        logger.info(f'[PUSH] No active subscriptions for user {user_id}')
        return {'sent': 0, 'failed': 0, 'error': 'No active subscriptions'}

    payload_json = json.dumps({
        'title': str(title) if title else '',
        'body': str(body) if body else '',
        'icon': '/icons/icon-192x192.png',
        'tag': str((data or {}).get('type', 'notification')),
        'data': {k: str(v) for k, v in (data or {}).items()},
    })

    sent_count = 0
    failed_count = 0

    for subscription in subscriptions:
        try:
            webpush(
                subscription_info=subscription.get_subscription_info(),
                data=payload_json,
                vapid_private_key=VAPID_PRIVATE_KEY,
                vapid_claims=VAPID_CLAIMS
            )
            subscription.mark_used()
            sent_count += 1

        except WebPushException as e:
            failed_count += 1
            logger.error(f'[PUSH] WebPushException for subscription {subscription.id}: {e}')

            # If subscription is invalid/expired, deactivate it
            if e.response is not None and e.response.status_code in [404, 410]:
                logger.warning(f'[PUSH] Deactivating invalid subscription {subscription.id}')
                subscription.is_active = False
            else:
                subscription.mark_failed()

    try:
        db.session.commit()
    except Exception as commit_error:
        logger.error(f'[PUSH] Failed to update subscriptions: {commit_error}')
        db.session.rollback()

    result = {'sent': sent_count, 'failed': failed_count}
    logger.info(f'[PUSH] Completed for user {user_id}: {result}')
    return result
