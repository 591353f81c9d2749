"""
Log of payment-provider webhook events, one row per provider event id.
The unique event_id is what makes duplicate deliveries a no-op.
"""
from sqlalchemy import Column, Integer, String, DateTime, BigInteger
from app.db.base import Base
from app.utils.clock import utcnow


class BillingEventLog(Base):
    __tablename__ = "billing_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, unique=True, nullable=False, index=True)
    event_type = Column(String, nullable=False)
    sequence = Column(BigInteger, nullable=False)  # Provider ordering value (Stripe event.created)
    account_id = Column(Integer, nullable=True, index=True)
    outcome = Column(String, nullable=False)  # applied | stale | unknown_customer
    received_at = Column(DateTime, default=utcnow, nullable=False)
