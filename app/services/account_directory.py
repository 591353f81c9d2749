"""
Account lookups and the per-row serialization primitive used by admission,
the promotion ledger and the webhook reconciler.

Accounts and promotion codes carry a version column (SQLAlchemy
version_id_col), so every ORM UPDATE is a compare-and-swap on
(id, version). A lost swap raises StaleDataError at flush time;
run_serialized rolls back, reloads and retries a bounded number of times.
"""
import logging
import random
import time
from typing import Callable, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import ENTITLEMENT_MAX_RETRIES
from app.core.exceptions import AccountNotFound, ConcurrencyConflict
from app.models.account import Account
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


def load_account(db: Session, account_id: int, for_update: bool = False) -> Account:
    """Load an account or raise AccountNotFound. for_update takes the row lock."""
    query = db.query(Account).filter(Account.id == account_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    account = query.first()
    if not account:
        raise AccountNotFound(account_id)
    return account


def load_account_by_customer_ref(db: Session, customer_ref: str | None, for_update: bool = False) -> Account | None:
    if not customer_ref:
        return None
    query = db.query(Account).filter(Account.billing_customer_id == customer_ref)
    if for_update:
        query = query.with_for_update().populate_existing()
    return query.first()


def create_account(
    db: Session,
    username: str,
    email: str | None = None,
    display_name: str | None = None,
    now=None,
) -> Account:
    """Create a free account with a fresh counting period."""
    now = now or utcnow()
    account = Account(
        username=username,
        email=email.lower() if email else None,
        display_name=display_name,
        prompts_used=0,
        period_anchor=now,
        is_premium=False,
        subscription_status="inactive",
        created_at=now,
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    logger.info("Created account %s (%s)", account.id, username)
    return account


def run_serialized(
    db: Session,
    operation: Callable[[Session], T],
    max_attempts: int = ENTITLEMENT_MAX_RETRIES,
    label: str = "entitlement update",
) -> T:
    """
    Run operation(db) and commit, retrying when a versioned UPDATE loses.

    operation must reload whatever rows it mutates (it runs again from
    scratch on retry). Any other exception rolls back and propagates.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            result = operation(db)
            db.commit()
            return result
        except StaleDataError:
            db.rollback()
            logger.warning("%s lost a concurrent update (attempt %s/%s), retrying", label, attempt, max_attempts)
            if attempt < max_attempts:
                time.sleep(random.uniform(0, 0.01 * attempt))
        except Exception:
            db.rollback()
            raise

    logger.error("%s gave up after %s attempts", label, max_attempts)
    raise ConcurrencyConflict(f"{label} could not be applied after {max_attempts} attempts")
