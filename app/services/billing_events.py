"""
Billing events consumed by the webhook reconciler, and translation of Stripe
webhook payloads into them.

Only three kinds exist. Adding a kind means adding a class here, to
BillingEvent, and a branch in webhook_reconciler.apply_event.
"""
import logging
from dataclasses import dataclass
from typing import Union

from app.core.exceptions import MalformedBillingEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentSucceeded:
    event_id: str
    sequence: int
    account_ref: int | None
    plan: str | None = None
    customer_ref: str | None = None
    subscription_ref: str | None = None


@dataclass(frozen=True)
class SubscriptionUpserted:
    event_id: str
    sequence: int
    customer_ref: str
    subscription_ref: str
    status: str


@dataclass(frozen=True)
class SubscriptionCanceled:
    event_id: str
    sequence: int
    customer_ref: str


BillingEvent = Union[PaymentSucceeded, SubscriptionUpserted, SubscriptionCanceled]


# Stripe subscription status -> our subscription_status
_STATUS_MAP = {
    "active": "active",
    "trialing": "active",
    "past_due": "past_due",
    "unpaid": "past_due",
    "canceled": "canceled",
    "cancelled": "canceled",
    "incomplete_expired": "canceled",
}

_PAYMENT_EVENTS = ("checkout.session.completed", "invoice.paid", "invoice.payment_succeeded")
_UPSERT_EVENTS = ("customer.subscription.created", "customer.subscription.updated")
_CANCEL_EVENTS = ("customer.subscription.deleted",)


def normalize_subscription_status(status: str | None) -> str:
    return _STATUS_MAP.get((status or "").lower(), "inactive")


def _ref(value) -> str | None:
    """Stripe expands some references into objects; keep only the id."""
    if value is None:
        return None
    if isinstance(value, dict):
        return value.get("id")
    return str(value)


def _account_ref(obj: dict) -> int | None:
    # invoice payloads carry the subscription's metadata in different places across API versions
    sources = [
        obj.get("metadata"),
        (obj.get("subscription_details") or {}).get("metadata"),
        ((obj.get("parent") or {}).get("subscription_details") or {}).get("metadata"),
    ]
    for meta in sources:
        user_id = (meta or {}).get("user_id")
        if user_id is None:
            continue
        try:
            return int(user_id)
        except (TypeError, ValueError):
            raise MalformedBillingEvent(f"metadata.user_id is not an account id: {user_id!r}")
    return None


def _plan(obj: dict) -> str | None:
    meta = obj.get("metadata") or {}
    return meta.get("plan")


def parse_stripe_event(payload: dict) -> BillingEvent | None:
    """
    Build a BillingEvent from a Stripe event payload.

    Returns None for event types the reconciler does not care about. Raises
    MalformedBillingEvent when a relevant event lacks the fields it needs.
    """
    if not isinstance(payload, dict):
        raise MalformedBillingEvent("Event payload is not an object")

    event_type = payload.get("type")
    event_id = payload.get("id")
    created = payload.get("created")
    obj = (payload.get("data") or {}).get("object")

    if event_type not in _PAYMENT_EVENTS + _UPSERT_EVENTS + _CANCEL_EVENTS:
        logger.info("Ignoring Stripe event %s of type %s", event_id, event_type)
        return None

    if not event_id or created is None or not isinstance(obj, dict):
        raise MalformedBillingEvent(f"Stripe event {event_id!r} ({event_type}) is missing id, created or data.object")
    try:
        sequence = int(created)
    except (TypeError, ValueError):
        raise MalformedBillingEvent(f"Stripe event {event_id} has a non-numeric created value")

    customer_ref = _ref(obj.get("customer"))

    if event_type in _PAYMENT_EVENTS:
        if event_type == "checkout.session.completed" and obj.get("payment_status") != "paid":
            logger.info("Checkout session %s completed without payment, ignoring", obj.get("id"))
            return None
        account_ref = _account_ref(obj)
        if account_ref is None and not customer_ref:
            raise MalformedBillingEvent(f"Payment event {event_id} has neither metadata.user_id nor customer")
        return PaymentSucceeded(
            event_id=event_id,
            sequence=sequence,
            account_ref=account_ref,
            plan=_plan(obj),
            customer_ref=customer_ref,
            subscription_ref=_ref(obj.get("subscription")),
        )

    if not customer_ref:
        raise MalformedBillingEvent(f"Subscription event {event_id} has no customer")

    if event_type in _UPSERT_EVENTS:
        subscription_ref = _ref(obj.get("id"))
        if not subscription_ref:
            raise MalformedBillingEvent(f"Subscription event {event_id} has no subscription id")
        return SubscriptionUpserted(
            event_id=event_id,
            sequence=sequence,
            customer_ref=customer_ref,
            subscription_ref=subscription_ref,
            status=normalize_subscription_status(obj.get("status")),
        )

    return SubscriptionCanceled(event_id=event_id, sequence=sequence, customer_ref=customer_ref)
