"""
Billing routes: entitlement overview, promotion codes and Stripe Checkout.
Subscription state itself only changes through the Stripe webhook.
"""
import logging
from decimal import Decimal

import stripe
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.config import FRONTEND_URL, STRIPE_SECRET_KEY
from app.core.exceptions import AccountNotFound, ConcurrencyConflict, PromotionInvalid
from app.core.plan_limits import PLAN_PRICES
from app.db.session import get_db
from app.dependencies.auth import get_current_user_id
from app.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    EntitlementResponse,
    PromocodeRequest,
    PromocodeValidationResponse,
)
from app.services.account_directory import load_account
from app.services.admission import get_entitlement
from app.services.promotion_ledger import plan_price, quote_status, redeem, release_redemption, validate_code

router = APIRouter()
logger = logging.getLogger(__name__)

PLAN_INTERVALS = {"monthly": "month", "yearly": "year"}


def _to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


def _release_promocode(db: Session, user_id: int, code: str) -> None:
    """Give the code back when no checkout session was created for it."""
    try:
        release_redemption(db, user_id, code)
    except ConcurrencyConflict:
        logger.exception("Could not release promocode %s for account %s after failed checkout", code, user_id)


@router.get("/entitlement", response_model=EntitlementResponse)
def read_entitlement(
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """Current usage, limit and subscription state of the caller."""
    try:
        snapshot = get_entitlement(db, user_id)
    except AccountNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return {
        "plan_tier": snapshot.plan_tier,
        "is_premium": snapshot.is_premium,
        "subscription_status": snapshot.subscription_status,
        "prompts_used": snapshot.prompts_used,
        "limit": snapshot.limit,
        "remaining": snapshot.remaining,
        "period_anchor": snapshot.period_anchor,
    }


@router.post("/promocodes/validate", response_model=PromocodeValidationResponse)
def validate_promocode(
    request: PromocodeRequest,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """
    Check a promotion code and quote the discounted plan prices.
    Nothing is redeemed here; redemption happens at checkout.
    """
    promo = validate_code(db, request.code)
    reason = quote_status(db, user_id, promo)
    if reason is not None:
        error = PromotionInvalid(reason.value)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(error), "reason": error.reason},
        )
    return {
        "code": promo.code,
        "discount_percent": promo.discount_percent,
        "prices": {plan: plan_price(plan, promo.discount_percent) for plan in PLAN_PRICES},
    }


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout_session(
    request: CheckoutRequest,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    """
    Redeem the optional promotion code and create a Stripe Checkout Session
    for the (discounted) plan price. Returns the URL to redirect the user to.
    If Stripe fails, the redemption is released so the code can be retried.
    """
    if not STRIPE_SECRET_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment system not configured. Missing: STRIPE_SECRET_KEY"
        )

    try:
        account = load_account(db, user_id)
    except AccountNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if account.is_premium and account.subscription_status == "active":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User already has an active subscription"
        )

    discount_percent = 0
    if request.promocode:
        try:
            result = redeem(db, user_id, request.promocode)
        except ConcurrencyConflict:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Promocode is busy. Please try again in a moment."
            )
        if not result.applied:
            error = PromotionInvalid(result.status.value)
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"message": str(error), "reason": error.reason},
            )
        discount_percent = result.discount_percent

    amount = plan_price(request.plan, discount_percent)
    metadata = {"user_id": str(user_id), "plan": request.plan}
    if request.promocode:
        metadata["promocode"] = request.promocode.strip().upper()

    session_args = {
        "mode": "subscription",
        "payment_method_types": ["card"],
        "line_items": [
            {
                "price_data": {
                    "currency": "usd",
                    "unit_amount": _to_minor_units(amount),
                    "recurring": {"interval": PLAN_INTERVALS[request.plan]},
                    "product_data": {"name": f"PromptPal Premium ({request.plan})"},
                },
                "quantity": 1,
            }
        ],
        "success_url": f"{FRONTEND_URL}/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{FRONTEND_URL}/pricing?canceled=true",
        "metadata": metadata,
        "subscription_data": {"metadata": metadata},
    }
    if account.billing_customer_id:
        session_args["customer"] = account.billing_customer_id
    elif account.email:
        session_args["customer_email"] = account.email

    try:
        checkout_session = stripe.checkout.Session.create(api_key=STRIPE_SECRET_KEY, **session_args)
    except stripe.StripeError as e:
        logger.error("Stripe error creating checkout session for account %s: %s", user_id, e)
        if request.promocode:
            _release_promocode(db, user_id, request.promocode)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to create checkout session: {str(e)}"
        )

    logger.info("Created Stripe Checkout Session %s for account %s (%s, %s)", checkout_session.id, user_id, request.plan, amount)
    return {
        "checkout_url": checkout_session.url,
        "session_id": checkout_session.id,
        "plan": request.plan,
        "amount": amount,
        "discount_percent": discount_percent,
    }
