"""Typed views over verified Stripe webhook events.

``parse_event`` maps the event types the escrow engine reacts to onto small
dataclasses carrying only the fields their handler needs. Anything else
becomes ``UnknownEvent`` and is logged and ignored by the dispatcher.
"""

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class PaymentIntentSucceeded:
    event_id: str
    intent_id: str
    latest_charge: Optional[str]


@dataclass(frozen=True)
class TransferCreated:
    event_id: str
    transfer_id: str


@dataclass(frozen=True)
class ChargeRefunded:
    event_id: str
    charge_id: str
    amount_refunded: int  # cumulative, minor units


@dataclass(frozen=True)
class AccountUpdated:
    event_id: str
    account_id: str
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool


@dataclass(frozen=True)
class UnknownEvent:
    event_id: str
    type: str


WebhookEvent = Union[PaymentIntentSucceeded, TransferCreated, ChargeRefunded, AccountUpdated, UnknownEvent]


def _charge_id(value):
    # latest_charge is an id string unless the event was expanded
    if isinstance(value, str) or value is None:
        return value
    return value.get('id')


def parse_event(event) -> WebhookEvent:
    """Convert a raw Stripe event (dict-like) into a typed webhook event."""
    event_id = event.get('id') or ''
    event_type = event.get('type') or ''
    obj = (event.get('data') or {}).get('object') or {}

    if event_type == 'payment_intent.succeeded':
        return PaymentIntentSucceeded(
            event_id=event_id,
            intent_id=obj['id'],
            latest_charge=_charge_id(obj.get('latest_charge')),
        )
    if event_type == 'transfer.created':
        return TransferCreated(event_id=event_id, transfer_id=obj['id'])
    if event_type == 'charge.refunded':
        return ChargeRefunded(
            event_id=event_id,
            charge_id=obj['id'],
            amount_refunded=int(obj.get('amount_refunded') or 0),
        )
    if event_type == 'account.updated':
        return AccountUpdated(
            event_id=event_id,
            account_id=obj['id'],
            charges_enabled=bool(obj.get('charges_enabled')),
            payouts_enabled=bool(obj.get('payouts_enabled')),
            details_submitted=bool(obj.get('details_submitted')),
        )
    return UnknownEvent(event_id=event_id, type=event_type)
