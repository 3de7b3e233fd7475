"""Stripe gateway for escrow payments, transfers and refunds.

The gateway is constructed once per app (see ``create_app``) and injected
into the escrow and dispute engines. All amounts passed to Stripe are
integer minor units; callers convert with ``homeservices.utils.money``.
"""

import json
import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

import stripe

from homeservices.utils.errors import Internal, InvalidArgument, Unavailable
from homeservices.utils.money import CENT, quantize_amount

logger = logging.getLogger(__name__)

PLATFORM_NAME = 'homeservices'
DEFAULT_PLATFORM_FEE_PERCENT = 12.0


def calculate_fees(amount_gross, platform_fee_percent=DEFAULT_PLATFORM_FEE_PERCENT):
    """Calculate platform fee and pro net amount.

    Args:
        amount_gross: Gross amount in major units
        platform_fee_percent: Platform commission in percent

    Returns:
        tuple: (platform_fee_amount, amount_net), both Decimal rounded to 2 decimals
    """
    gross = quantize_amount(amount_gross)
    platform_fee = (gross * Decimal(str(platform_fee_percent)) / 100).quantize(CENT, rounding=ROUND_HALF_UP)
    amount_net = (gross - platform_fee).quantize(CENT, rounding=ROUND_HALF_UP)
    return platform_fee, amount_net


class StripeGateway:
    """Thin wrapper over the Stripe API used by the escrow engine."""

    def __init__(self, api_key=None, webhook_secret=None,
                 platform_fee_percent=DEFAULT_PLATFORM_FEE_PERCENT):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.platform_fee_percent = platform_fee_percent

    def calculate_fees(self, amount_gross):
        return calculate_fees(amount_gross, self.platform_fee_percent)

    def _metadata(self, metadata):
        return {
            **{k: str(v) for k, v in (metadata or {}).items() if v is not None},
            'platform': PLATFORM_NAME,
            'created_at': datetime.utcnow().isoformat(),
        }

    def _call(self, action, func, **params):
        if not self.api_key:
            raise Internal('Payment processor is not configured')
        try:
            return func(api_key=self.api_key, **params)
        except stripe.APIConnectionError as e:
            logger.error(f'[STRIPE] {action} failed - processor unreachable: {e}')
            raise Unavailable('Payment processor unavailable')
        except stripe.StripeError as e:
            logger.error(f'[STRIPE] {action} failed: {e}')
            raise Internal(f'Payment processor error during {action}')

    def create_payment_intent(self, amount, currency, connected_account_id=None, metadata=None):
        """Create a PaymentIntent; funds are captured automatically and held by the platform.

        Args:
            amount: Amount in minor units (cents)
            currency: ISO currency code
            connected_account_id: Pro's connected account, used for the transfer group
            metadata: Extra metadata (job id, customer id)

        Returns:
            stripe.PaymentIntent
        """
        job_id = (metadata or {}).get('jobId')
        params = {
            'amount': amount,
            'currency': currency.lower(),
            'capture_method': 'automatic',  # Automatic capture, manual transfer for escrow
            'metadata': self._metadata({**(metadata or {}), 'connectedAccountId': connected_account_id or ''}),
        }
        if connected_account_id:
            params['transfer_group'] = f'job_{job_id}'

        intent = self._call('create_payment_intent', stripe.PaymentIntent.create, **params)
        logger.info(f'[STRIPE] Payment intent created: {intent.id} ({amount} {currency})')
        return intent

    def create_transfer(self, amount, currency, destination, transfer_group=None,
                        metadata=None, idempotency_key=None):
        """Create a transfer to a connected account (escrow release)."""
        params = {
            'amount': amount,
            'currency': currency.lower(),
            'destination': destination,
            'metadata': self._metadata(metadata),
        }
        if transfer_group:
            params['transfer_group'] = transfer_group
        if idempotency_key:
            params['idempotency_key'] = idempotency_key

        transfer = self._call('create_transfer', stripe.Transfer.create, **params)
        logger.info(f'[STRIPE] Transfer created: {transfer.id} ({amount} {currency} -> {destination})')
        return transfer

    def create_refund(self, payment_intent_id, amount, reason='requested_by_customer',
                      metadata=None, idempotency_key=None):
        """Refund ``amount`` minor units against a PaymentIntent."""
        params = {
            'payment_intent': payment_intent_id,
            'amount': amount,
            'reason': reason,
            'metadata': self._metadata(metadata),
        }
        if idempotency_key:
            params['idempotency_key'] = idempotency_key

        refund = self._call('create_refund', stripe.Refund.create, **params)
        logger.info(f'[STRIPE] Refund created: {refund.id} ({amount} against {payment_intent_id})')
        return refund

    def create_connect_account(self):
        """Create a Stripe Connect Express account for a pro."""
        account = self._call(
            'create_connect_account',
            stripe.Account.create,
            type='express',
            business_type='individual',
            capabilities={'transfers': {'requested': True}},
        )
        logger.info(f'[STRIPE] Connect account created: {account.id}')
        return account

    def create_account_link(self, account_id, refresh_url, return_url):
        """Create an onboarding link for a Connect Express account."""
        return self._call(
            'create_account_link',
            stripe.AccountLink.create,
            account=account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type='account_onboarding',
        )

    def construct_event(self, payload, signature):
        """Verify the webhook signature and return the event as a plain dict.

        Raises:
            InvalidArgument: If the payload or signature is invalid
        """
        if not self.webhook_secret:
            raise Internal('Webhook secret is not configured')
        if not signature:
            raise InvalidArgument('Missing Stripe-Signature header')
        try:
            if hasattr(payload, 'decode'):
                payload = payload.decode('utf-8')
            stripe.WebhookSignature.verify_header(
                payload, signature, self.webhook_secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
            )
            event = json.loads(payload)
        except ValueError:
            raise InvalidArgument('Invalid payload')
        except stripe.SignatureVerificationError:
            logger.warning('[STRIPE] Webhook signature verification failed')
            raise InvalidArgument('Invalid signature')

        logger.info(f"[STRIPE] Webhook signature verified: {event.get('type')} ({event.get('id')})")
        return event
