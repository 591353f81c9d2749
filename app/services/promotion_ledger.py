"""
Promotion codes: lookup, one-time redemption per account, and discounted
plan prices for checkout.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.plan_limits import PLAN_PRICES
from app.models.promotion_code import PromotionCode
from app.models.redemption import Redemption
from app.services.account_directory import load_account, run_serialized
from app.utils.clock import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class RedemptionStatus(str, enum.Enum):
    APPLIED = "applied"
    ALREADY_USED = "already_used"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class RedemptionResult:
    status: RedemptionStatus
    code: str
    discount_percent: int | None = None

    @property
    def applied(self) -> bool:
        return self.status is RedemptionStatus.APPLIED


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def validate_code(db: Session, code: str) -> PromotionCode | None:
    """Look up a code. None means NotFound (unknown or deactivated)."""
    normalized = normalize_code(code)
    if not normalized:
        return None
    promo = db.query(PromotionCode).filter(PromotionCode.code == normalized).first()
    if not promo or not promo.is_active:
        return None
    return promo


def check_usable(promo: PromotionCode | None, now: datetime | None = None) -> RedemptionStatus | None:
    """Why promo cannot be used right now, or None if it can."""
    now = to_naive_utc(now) if now else utcnow()
    if promo is None or not promo.is_active:
        return RedemptionStatus.NOT_FOUND
    if promo.is_expired(now):
        return RedemptionStatus.EXPIRED
    if promo.is_exhausted():
        return RedemptionStatus.EXHAUSTED
    return None


def find_redemption(db: Session, account_id: int, promotion_code_id: int) -> Redemption | None:
    return db.query(Redemption).filter(
        Redemption.account_id == account_id,
        Redemption.promotion_code_id == promotion_code_id,
    ).first()


def quote_status(
    db: Session,
    account_id: int,
    promo: PromotionCode | None,
    now: datetime | None = None,
) -> RedemptionStatus | None:
    """
    What redeem() would answer for this account right now, without redeeming.
    None means the code would apply.
    """
    if promo is not None and promo.is_active and find_redemption(db, account_id, promo.id) is not None:
        return RedemptionStatus.ALREADY_USED
    return check_usable(promo, now)


def redeem(db: Session, account_id: int, code: str, now: datetime | None = None) -> RedemptionResult:
    """
    Apply code to account_id once.

    The code row is locked and its used_count update is versioned, so two
    redemptions of a scarce code cannot both succeed; the unique
    (account, code) index turns a concurrent second redemption by the same
    account into ALREADY_USED.
    """
    now = to_naive_utc(now) if now else utcnow()
    normalized = normalize_code(code)

    def transition(session: Session) -> RedemptionResult:
        load_account(session, account_id)
        promo = (
            session.query(PromotionCode)
            .filter(PromotionCode.code == normalized)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if promo is None or not promo.is_active:
            return RedemptionResult(RedemptionStatus.NOT_FOUND, normalized)

        if find_redemption(session, account_id, promo.id) is not None:
            return RedemptionResult(RedemptionStatus.ALREADY_USED, normalized)

        reason = check_usable(promo, now)
        if reason is not None:
            return RedemptionResult(reason, normalized)

        session.add(Redemption(account_id=account_id, promotion_code_id=promo.id, redeemed_at=now))
        promo.used_count += 1
        session.flush()
        return RedemptionResult(RedemptionStatus.APPLIED, normalized, promo.discount_percent)

    try:
        result = run_serialized(db, transition, label=f"redemption of {normalized} by account {account_id}")
    except IntegrityError:
        # run_serialized already rolled back
        logger.info("Concurrent redemption of %s by account %s rejected by unique index", normalized, account_id)
        return RedemptionResult(RedemptionStatus.ALREADY_USED, normalized)

    if result.applied:
        logger.info("Account %s redeemed %s (%s%% off)", account_id, normalized, result.discount_percent)
    else:
        logger.info("Account %s could not redeem %s: %s", account_id, normalized, result.status.value)
    return result


def release_redemption(db: Session, account_id: int, code: str) -> bool:
    """
    Undo a redemption whose purchase never started (checkout session creation
    failed). Deletes the Redemption row and gives the use back to the code.
    Returns False when there was nothing to release.
    """
    normalized = normalize_code(code)

    def transition(session: Session) -> bool:
        promo = (
            session.query(PromotionCode)
            .filter(PromotionCode.code == normalized)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if promo is None:
            return False
        redemption = find_redemption(session, account_id, promo.id)
        if redemption is None:
            return False
        session.delete(redemption)
        promo.used_count = max(0, promo.used_count - 1)
        session.flush()
        return True

    released = run_serialized(db, transition, label=f"release of {normalized} for account {account_id}")
    if released:
        logger.info("Released redemption of %s by account %s", normalized, account_id)
    return released


def create_promotion_code(
    db: Session,
    code: str,
    discount_percent: int,
    max_uses: int = 0,
    expires_at: datetime | None = None,
    description: str | None = None,
    is_active: bool = True,
) -> PromotionCode:
    """Administrative creation of a promotion code."""
    normalized = normalize_code(code)
    if not normalized:
        raise ValueError("Promotion code must not be empty")
    if not 0 <= discount_percent <= 100:
        raise ValueError("discount_percent must be between 0 and 100")
    if max_uses < 0:
        raise ValueError("max_uses must be 0 (unlimited) or positive")

    promo = PromotionCode(
        code=normalized,
        description=description,
        discount_percent=discount_percent,
        max_uses=max_uses,
        used_count=0,
        is_active=is_active,
        expires_at=to_naive_utc(expires_at) if expires_at else None,
        created_at=utcnow(),
    )
    db.add(promo)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValueError(f"Promotion code {normalized} already exists")
    db.refresh(promo)
    logger.info("Created promotion code %s (%s%% off, max uses %s)", normalized, discount_percent, max_uses)
    return promo


def discounted_price(base_price: Decimal, discount_percent: int | None) -> Decimal:
    """Apply a percentage discount, rounding half-up to the cent."""
    base = Decimal(str(base_price))
    if not discount_percent:
        return base.quantize(CENT, rounding=ROUND_HALF_UP)
    factor = (Decimal(100) - Decimal(discount_percent)) / Decimal(100)
    return (base * factor).quantize(CENT, rounding=ROUND_HALF_UP)


def plan_price(plan: str, discount_percent: int | None = None) -> Decimal:
    if plan not in PLAN_PRICES:
        raise ValueError(f"Unknown plan: {plan}")
    return discounted_price(PLAN_PRICES[plan], discount_percent)
