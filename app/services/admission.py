"""
Admission control for prompt optimizations.

Every request runs the same per-account transition under exclusive access:
apply the monthly reset if a month boundary was crossed, then allow and
increment (premium, or free under the limit) or deny. The increment is
committed before the caller talks to the rewrite service, and it is not
refunded if that call fails: consumption is charged per attempt.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.plan_limits import get_plan_limit, plan_tier_for
from app.models.account import Account
from app.services.account_directory import load_account, run_serialized
from app.services.period_policy import period_start, should_reset
from app.utils.clock import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    prompts_used: int
    limit: int  # -1 means unlimited
    reason: str | None = None


@dataclass(frozen=True)
class EntitlementSnapshot:
    account_id: int
    plan_tier: str
    is_premium: bool
    subscription_status: str
    prompts_used: int
    limit: int
    remaining: int | None  # None for unlimited
    period_anchor: datetime


def _monthly_limit(account: Account) -> int:
    return get_plan_limit(plan_tier_for(account.is_premium), "max_optimizations_per_month")


def _admit(account: Account, now: datetime) -> AdmissionDecision:
    if should_reset(account.period_anchor, now):
        logger.info(
            "Resetting usage for account %s (%s used since %s)",
            account.id, account.prompts_used, account.period_anchor,
        )
        account.prompts_used = 0
        account.period_anchor = now

    limit = _monthly_limit(account)

    # Premium accounts are still counted, only never denied
    if account.is_premium or limit == -1 or account.prompts_used < limit:
        account.prompts_used += 1
        return AdmissionDecision(allowed=True, prompts_used=account.prompts_used, limit=limit)

    return AdmissionDecision(
        allowed=False,
        prompts_used=account.prompts_used,
        limit=limit,
        reason=RATE_LIMIT_EXCEEDED,
    )


def try_consume(db: Session, account_id: int, now: datetime | None = None) -> AdmissionDecision:
    """
    Decide one optimization request for account_id and, on allow, durably
    consume a slot. Raises AccountNotFound, or ConcurrencyConflict if the
    versioned update keeps losing.
    """
    now = to_naive_utc(now) if now else utcnow()

    def transition(session: Session) -> AdmissionDecision:
        account = load_account(session, account_id, for_update=True)
        return _admit(account, now)

    decision = run_serialized(db, transition, label=f"admission for account {account_id}")
    if decision.allowed:
        logger.info("Admitted optimization for account %s (%s used)", account_id, decision.prompts_used)
    else:
        logger.info(
            "Denied optimization for account %s: %s (%s/%s)",
            account_id, decision.reason, decision.prompts_used, decision.limit,
        )
    return decision


def get_entitlement(db: Session, account_id: int, now: datetime | None = None) -> EntitlementSnapshot:
    """Read-only view of an account's entitlement, as the next admission would see it."""
    now = to_naive_utc(now) if now else utcnow()
    account = load_account(db, account_id)

    used = account.prompts_used
    anchor = account.period_anchor
    if should_reset(anchor, now):
        used = 0
        anchor = now

    limit = _monthly_limit(account)
    remaining = None if account.is_premium or limit == -1 else max(0, limit - used)
    return EntitlementSnapshot(
        account_id=account.id,
        plan_tier=plan_tier_for(account.is_premium),
        is_premium=account.is_premium,
        subscription_status=account.subscription_status,
        prompts_used=used,
        limit=limit,
        remaining=remaining,
        period_anchor=anchor,
    )


def sweep_period_resets(db: Session, now: datetime | None = None) -> int:
    """
    Reset every account whose anchor lies before the current month.

    Optional: admission resets lazily anyway. Bumps version so an admission
    that loaded the row before the sweep loses its compare-and-swap and
    retries against the reset state.
    """
    now = to_naive_utc(now) if now else utcnow()
    result = db.execute(
        update(Account)
        .where(Account.period_anchor < period_start(now))
        .values(prompts_used=0, period_anchor=now, version=Account.version + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.info("Usage period sweep reset %s account(s)", result.rowcount)
    return result.rowcount
