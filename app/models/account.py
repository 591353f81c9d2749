from sqlalchemy import Column, Integer, String, Boolean, DateTime, BigInteger, CheckConstraint
from app.db.base import Base
from app.utils.clock import utcnow


class Account(Base):
    """
    Entitlement record for one PromptPal user.

    prompts_used counts optimizations since period_anchor. Premium and
    subscription fields are owned by the webhook reconciler; every UPDATE is
    versioned so concurrent writers cannot silently overwrite each other.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("prompts_used >= 0", name="ck_accounts_prompts_used_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, nullable=True)
    display_name = Column(String, nullable=True)
    prompts_used = Column(Integer, default=0, nullable=False)
    period_anchor = Column(DateTime, default=utcnow, nullable=False)  # When prompts_used was last reset
    is_premium = Column(Boolean, default=False, nullable=False)
    billing_customer_id = Column(String, unique=True, index=True, nullable=True)  # Stripe customer (cus_...)
    billing_subscription_id = Column(String, nullable=True)  # Stripe subscription (sub_...)
    subscription_status = Column(String, default="inactive", nullable=False)
    # Most recent provider event applied to this account (duplicate / stale detection)
    last_billing_event_id = Column(String, nullable=True)
    last_billing_event_at = Column(BigInteger, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return (
            f"<Account(id={self.id}, used={self.prompts_used}, premium={self.is_premium}, "
            f"status={self.subscription_status}, version={self.version})>"
        )
