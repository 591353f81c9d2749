"""
Converges account entitlement to the payment provider's view.

Deliveries may be duplicated and arrive out of order. Each event id is
recorded once in billing_events (unique), and each account remembers the
provider ordering value of the last event applied to it; anything older is
discarded as stale. Transitions are absolute (they set state rather than
adjust it), so re-applying one never double-grants.
"""
import enum
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import AccountNotFound, UnknownBillingCustomer
from app.models.account import Account
from app.models.billing_event import BillingEventLog
from app.services.account_directory import load_account, load_account_by_customer_ref, run_serialized
from app.services.billing_events import (
    BillingEvent,
    PaymentSucceeded,
    SubscriptionCanceled,
    SubscriptionUpserted,
)
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, enum.Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    UNKNOWN_CUSTOMER = "unknown_customer"


def _event_type(event: BillingEvent) -> str:
    return type(event).__name__


def _resolve_account(db: Session, event: BillingEvent) -> Account:
    if isinstance(event, PaymentSucceeded):
        if event.account_ref is not None:
            try:
                return load_account(db, event.account_ref, for_update=True)
            except AccountNotFound:
                logger.warning("Payment event %s names unknown account %s", event.event_id, event.account_ref)
        account = load_account_by_customer_ref(db, event.customer_ref, for_update=True)
        if account is None:
            raise UnknownBillingCustomer(event.customer_ref or event.account_ref)
        return account

    account = load_account_by_customer_ref(db, event.customer_ref, for_update=True)
    if account is None:
        raise UnknownBillingCustomer(event.customer_ref)
    return account


def _link_billing_refs(db: Session, account: Account, customer_ref: str | None, subscription_ref: str | None) -> None:
    if customer_ref and account.billing_customer_id != customer_ref:
        owner = load_account_by_customer_ref(db, customer_ref)
        if owner is not None and owner.id != account.id:
            logger.warning(
                "Billing customer %s already linked to account %s, not relinking to %s",
                customer_ref, owner.id, account.id,
            )
        elif account.billing_customer_id is None:
            account.billing_customer_id = customer_ref
    if subscription_ref:
        account.billing_subscription_id = subscription_ref


def _transition(db: Session, account: Account, event: BillingEvent) -> None:
    if isinstance(event, PaymentSucceeded):
        _link_billing_refs(db, account, event.customer_ref, event.subscription_ref)
        account.is_premium = True
        account.subscription_status = "active"
    elif isinstance(event, SubscriptionUpserted):
        account.billing_subscription_id = event.subscription_ref
        account.is_premium = event.status == "active"
        account.subscription_status = event.status
    elif isinstance(event, SubscriptionCanceled):
        account.is_premium = False
        account.subscription_status = "inactive"
    else:
        raise TypeError(f"Unhandled billing event type: {type(event).__name__}")


def _record(db: Session, event: BillingEvent, outcome: ReconcileOutcome, account_id: int | None) -> None:
    db.add(BillingEventLog(
        event_id=event.event_id,
        event_type=_event_type(event),
        sequence=event.sequence,
        account_id=account_id,
        outcome=outcome.value,
        received_at=utcnow(),
    ))


def apply_event(db: Session, event: BillingEvent) -> ReconcileOutcome:
    """
    Apply one billing event. Safe to call any number of times per event and in
    any order. Never raises for unknown customers; those are logged no-ops.
    A constraint violation that is not a duplicate delivery is retried once
    and then propagates, so the provider redelivers the event.
    """
    if not isinstance(event, (PaymentSucceeded, SubscriptionUpserted, SubscriptionCanceled)):
        raise TypeError(f"Unhandled billing event type: {type(event).__name__}")

    def reconcile(session: Session) -> ReconcileOutcome:
        seen = session.query(BillingEventLog).filter(BillingEventLog.event_id == event.event_id).first()
        if seen:
            return ReconcileOutcome.DUPLICATE

        try:
            account = _resolve_account(session, event)
        except UnknownBillingCustomer as e:
            logger.info("Billing event %s (%s): %s; acknowledged without changes", event.event_id, _event_type(event), e)
            _record(session, event, ReconcileOutcome.UNKNOWN_CUSTOMER, None)
            return ReconcileOutcome.UNKNOWN_CUSTOMER

        if account.last_billing_event_id == event.event_id:
            return ReconcileOutcome.DUPLICATE

        if account.last_billing_event_at is not None and event.sequence < account.last_billing_event_at:
            logger.info(
                "Discarding stale billing event %s (%s) for account %s: sequence %s < %s",
                event.event_id, _event_type(event), account.id, event.sequence, account.last_billing_event_at,
            )
            _record(session, event, ReconcileOutcome.STALE, account.id)
            return ReconcileOutcome.STALE

        _transition(session, account, event)
        account.last_billing_event_id = event.event_id
        account.last_billing_event_at = event.sequence
        _record(session, event, ReconcileOutcome.APPLIED, account.id)
        session.flush()
        logger.info(
            "Applied billing event %s (%s) to account %s: premium=%s status=%s",
            event.event_id, _event_type(event), account.id, account.is_premium, account.subscription_status,
        )
        return ReconcileOutcome.APPLIED

    for attempt in (1, 2):
        try:
            return run_serialized(db, reconcile, label=f"billing event {event.event_id}")
        except IntegrityError as e:
            # run_serialized already rolled back
            if _is_logged(db, event.event_id):
                logger.info("Billing event %s was recorded concurrently, treating as duplicate", event.event_id)
                return ReconcileOutcome.DUPLICATE
            if attempt == 2:
                raise
            # e.g. billing_customer_id linked to another account concurrently; the retry sees that link
            logger.warning("Billing event %s hit a constraint (%s), retrying", event.event_id, e.orig)


def _is_logged(db: Session, event_id: str) -> bool:
    try:
        return db.query(BillingEventLog.id).filter(BillingEventLog.event_id == event_id).first() is not None
    finally:
        db.rollback()
