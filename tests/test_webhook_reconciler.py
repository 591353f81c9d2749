from concurrent.futures import ThreadPoolExecutor
import threading

import pytest

from app.models.billing_event import BillingEventLog
from app.services.admission import try_consume
from app.services.billing_events import PaymentSucceeded, SubscriptionCanceled, SubscriptionUpserted
from app.services.webhook_reconciler import ReconcileOutcome, apply_event


def _state(account):
    return (
        account.is_premium,
        account.subscription_status,
        account.prompts_used,
        account.billing_customer_id,
        account.billing_subscription_id,
    )


def test_payment_grants_premium_and_links_refs(db, make_account, fetch_account):
    account_id = make_account()
    event = PaymentSucceeded(
        event_id="evt_pay_1", sequence=1000, account_ref=account_id,
        plan="monthly", customer_ref="cus_A", subscription_ref="sub_A",
    )

    assert apply_event(db, event) is ReconcileOutcome.APPLIED

    account = fetch_account(account_id)
    assert account.is_premium is True
    assert account.subscription_status == "active"
    assert account.billing_customer_id == "cus_A"
    assert account.billing_subscription_id == "sub_A"
    assert account.last_billing_event_id == "evt_pay_1"
    assert account.last_billing_event_at == 1000


def test_replayed_payment_is_idempotent(db, make_account, fetch_account):
    account_id = make_account()
    try_consume(db, account_id)
    event = PaymentSucceeded(event_id="evt_pay_2", sequence=1000, account_ref=account_id, customer_ref="cus_B")

    apply_event(db, event)
    once = _state(fetch_account(account_id))

    assert apply_event(db, event) is ReconcileOutcome.DUPLICATE
    assert _state(fetch_account(account_id)) == once
    assert once[2] == 1
    assert db.query(BillingEventLog).filter(BillingEventLog.event_id == "evt_pay_2").count() == 1


def test_payment_resolves_by_customer_when_metadata_missing(db, make_account, fetch_account):
    account_id = make_account(billing_customer_id="cus_C")

    outcome = apply_event(db, PaymentSucceeded(event_id="evt_pay_3", sequence=5, account_ref=None, customer_ref="cus_C"))

    assert outcome is ReconcileOutcome.APPLIED
    assert fetch_account(account_id).is_premium is True


def test_older_cancel_does_not_revert_newer_activation(db, make_account, fetch_account):
    account_id = make_account(billing_customer_id="cus_D")
    activated = SubscriptionUpserted(
        event_id="evt_up", sequence=200, customer_ref="cus_D", subscription_ref="sub_D", status="active",
    )
    stale_cancel = SubscriptionCanceled(event_id="evt_cancel", sequence=100, customer_ref="cus_D")

    assert apply_event(db, activated) is ReconcileOutcome.APPLIED
    assert apply_event(db, stale_cancel) is ReconcileOutcome.STALE

    account = fetch_account(account_id)
    assert account.is_premium is True
    assert account.subscription_status == "active"
    assert account.last_billing_event_id == "evt_up"


def test_cancel_in_order_reverts_to_inactive(db, make_account, fetch_account):
    account_id = make_account(billing_customer_id="cus_E")
    activated = SubscriptionUpserted(
        event_id="evt_up", sequence=100, customer_ref="cus_E", subscription_ref="sub_E", status="active",
    )
    canceled = SubscriptionCanceled(event_id="evt_cancel", sequence=200, customer_ref="cus_E")

    apply_event(db, activated)
    assert apply_event(db, canceled) is ReconcileOutcome.APPLIED

    account = fetch_account(account_id)
    assert account.is_premium is False
    assert account.subscription_status == "inactive"
    assert account.billing_subscription_id == "sub_E"


def test_equal_sequence_is_applied(db, make_account, fetch_account):
    account_id = make_account(billing_customer_id="cus_F")
    apply_event(db, SubscriptionUpserted("evt_1", 300, "cus_F", "sub_F", "active"))

    assert apply_event(db, SubscriptionCanceled("evt_2", 300, "cus_F")) is ReconcileOutcome.APPLIED
    assert fetch_account(account_id).is_premium is False


def test_past_due_drops_premium(db, make_account, fetch_account):
    account_id = make_account(billing_customer_id="cus_G", is_premium=True, subscription_status="active")

    apply_event(db, SubscriptionUpserted("evt_pd", 10, "cus_G", "sub_G", "past_due"))

    account = fetch_account(account_id)
    assert account.is_premium is False
    assert account.subscription_status == "past_due"


def test_cancel_for_unmapped_customer_is_a_noop(db, make_account, fetch_account):
    account_id = make_account(billing_customer_id="cus_H")
    before = _state(fetch_account(account_id))

    outcome = apply_event(db, SubscriptionCanceled(event_id="evt_x", sequence=1, customer_ref="cus_nobody"))

    assert outcome is ReconcileOutcome.UNKNOWN_CUSTOMER
    assert _state(fetch_account(account_id)) == before
    logged = db.query(BillingEventLog).filter(BillingEventLog.event_id == "evt_x").one()
    assert logged.outcome == "unknown_customer"
    assert logged.account_id is None


def test_payment_for_unknown_account_and_customer_is_a_noop(db):
    event = PaymentSucceeded(event_id="evt_lost", sequence=1, account_ref=777, customer_ref="cus_unknown")

    assert apply_event(db, event) is ReconcileOutcome.UNKNOWN_CUSTOMER


def test_customer_already_linked_elsewhere_is_not_relinked(db, make_account, fetch_account):
    owner_id = make_account(billing_customer_id="cus_I")
    payer_id = make_account()

    apply_event(db, PaymentSucceeded(event_id="evt_i", sequence=1, account_ref=payer_id, customer_ref="cus_I"))

    assert fetch_account(payer_id).billing_customer_id is None
    assert fetch_account(payer_id).is_premium is True
    assert fetch_account(owner_id).billing_customer_id == "cus_I"


def test_unsupported_event_type_is_rejected(db):
    with pytest.raises(TypeError):
        apply_event(db, {"type": "invoice.paid"})


def test_concurrent_duplicate_deliveries_apply_once(session_factory, make_account, fetch_account):
    account_id = make_account(billing_customer_id="cus_J")
    event = SubscriptionUpserted("evt_dup", 50, "cus_J", "sub_J", "active")
    barrier = threading.Barrier(4)

    def deliver(_):
        session = session_factory()
        try:
            barrier.wait()
            return apply_event(session, event)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=4) as pool:
        outcomes = list(pool.map(deliver, range(4)))

    assert outcomes.count(ReconcileOutcome.APPLIED) == 1
    assert outcomes.count(ReconcileOutcome.DUPLICATE) == 3
    assert fetch_account(account_id).is_premium is True


def test_customer_link_race_is_retried_not_reported_as_duplicate(db, make_account, fetch_account, monkeypatch):
    from app.services import webhook_reconciler

    owner_id = make_account(billing_customer_id="cus_race")
    payer_id = make_account()
    real_lookup = webhook_reconciler.load_account_by_customer_ref
    lookups = []

    def lookup_missing_concurrent_link(session, customer_ref, for_update=False):
        lookups.append(customer_ref)
        if len(lookups) == 1:
            # the owner's link committed after this lookup ran
            return None
        return real_lookup(session, customer_ref, for_update=for_update)

    monkeypatch.setattr(webhook_reconciler, "load_account_by_customer_ref", lookup_missing_concurrent_link)
    event = PaymentSucceeded(event_id="evt_race", sequence=1, account_ref=payer_id, customer_ref="cus_race")

    assert apply_event(db, event) is ReconcileOutcome.APPLIED

    payer = fetch_account(payer_id)
    assert payer.is_premium is True
    assert payer.billing_customer_id is None
    assert fetch_account(owner_id).billing_customer_id == "cus_race"
    assert db.query(BillingEventLog).filter(BillingEventLog.event_id == "evt_race").one().outcome == "applied"


def test_persistent_constraint_violation_propagates(db, make_account, fetch_account, monkeypatch):
    from sqlalchemy.exc import IntegrityError

    from app.services import webhook_reconciler

    make_account(billing_customer_id="cus_taken")
    payer_id = make_account()
    monkeypatch.setattr(webhook_reconciler, "load_account_by_customer_ref", lambda *args, **kwargs: None)
    event = PaymentSucceeded(event_id="evt_taken", sequence=1, account_ref=payer_id, customer_ref="cus_taken")

    with pytest.raises(IntegrityError):
        apply_event(db, event)

    assert fetch_account(payer_id).is_premium is False
    assert db.query(BillingEventLog).filter(BillingEventLog.event_id == "evt_taken").count() == 0
