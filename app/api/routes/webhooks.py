"""
Stripe webhook. Events are translated into billing events and handed to the
reconciler. Anything the reconciler cannot use (unknown event types,
malformed payloads, customers without an account) is acknowledged with 200
so Stripe does not redeliver it forever.
"""
import json
import logging

import stripe
from fastapi import APIRouter, Request, HTTPException, status, Depends
from sqlalchemy.orm import Session

from app.core.config import STRIPE_WEBHOOK_SECRET
from app.core.exceptions import ConcurrencyConflict, MalformedBillingEvent
from app.db.session import get_db
from app.services.billing_events import parse_stripe_event
from app.services.webhook_reconciler import apply_event

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/stripe")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Register this URL in the Stripe dashboard: https://your-backend.com/webhooks/stripe"""
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if STRIPE_WEBHOOK_SECRET:
        if not sig_header:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Missing stripe-signature header"
            )
        try:
            stripe.WebhookSignature.verify_header(payload.decode("utf-8"), sig_header, STRIPE_WEBHOOK_SECRET)
        except (stripe.SignatureVerificationError, UnicodeDecodeError):
            logger.warning("Rejected Stripe webhook with invalid signature")
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid webhook signature"
            )

    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")

    try:
        event = parse_stripe_event(data)
    except MalformedBillingEvent as e:
        logger.warning("Malformed Stripe event acknowledged without changes: %s", e)
        return {"status": "ignored", "reason": "malformed"}

    if event is None:
        return {"status": "ignored"}

    try:
        outcome = apply_event(db, event)
    except ConcurrencyConflict:
        # Not acknowledged: Stripe retries later
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Billing event could not be applied, retry later"
        )

    return {"status": outcome.value}
