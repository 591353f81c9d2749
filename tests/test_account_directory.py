import pytest
from sqlalchemy import update
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import AccountNotFound, ConcurrencyConflict
from app.models import Account
from app.services.account_directory import create_account, load_account, load_account_by_customer_ref, run_serialized


def test_create_account_starts_free(db):
    account = create_account(db, "carol", "Carol@Example.COM", display_name="Carol")

    assert account.email == "carol@example.com"
    assert account.prompts_used == 0
    assert account.is_premium is False
    assert account.subscription_status == "inactive"
    assert account.period_anchor == account.created_at
    assert account.version == 1


def test_load_account(db, make_account):
    account_id = make_account(billing_customer_id="cus_K")

    assert load_account(db, account_id).id == account_id
    assert load_account_by_customer_ref(db, "cus_K").id == account_id
    assert load_account_by_customer_ref(db, "cus_missing") is None
    assert load_account_by_customer_ref(db, None) is None
    with pytest.raises(AccountNotFound):
        load_account(db, 12345)


def test_run_serialized_retries_lost_updates(db):
    attempts = []

    def operation(session):
        attempts.append(1)
        if len(attempts) < 3:
            raise StaleDataError("version mismatch")
        return "done"

    assert run_serialized(db, operation, max_attempts=5) == "done"
    assert len(attempts) == 3


def test_run_serialized_gives_up(db):
    def operation(session):
        raise StaleDataError("version mismatch")

    with pytest.raises(ConcurrencyConflict):
        run_serialized(db, operation, max_attempts=2)


def test_run_serialized_propagates_other_errors(db):
    def operation(session):
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        run_serialized(db, operation)


def test_versioned_update_bumps_version(db, session_factory, make_account, fetch_account):
    account_id = make_account()
    stale_session = session_factory()
    try:
        stale = stale_session.get(Account, account_id)
        stale_session.expunge(stale)
    finally:
        stale_session.close()

    account = load_account(db, account_id)
    account.prompts_used = 4
    db.commit()

    assert fetch_account(account_id).version == stale.version + 1


def test_run_serialized_recovers_from_a_stale_versioned_update(db, make_account, fetch_account):
    account_id = make_account()
    initial_version = fetch_account(account_id).version
    attempts = []

    def consume(session):
        attempts.append(1)
        account = load_account(session, account_id, for_update=True)
        if len(attempts) == 1:
            # a competing writer bumps the version under the loaded row
            session.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(prompts_used=7, version=Account.version + 1)
                .execution_options(synchronize_session=False)
            )
        account.prompts_used += 1
        session.flush()
        return account.prompts_used

    assert run_serialized(db, consume) == 1
    assert len(attempts) == 2

    stored = fetch_account(account_id)
    assert stored.prompts_used == 1
    assert stored.version == initial_version + 1
