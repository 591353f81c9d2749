from sqlalchemy import Column, Integer, DateTime, ForeignKey, UniqueConstraint
from app.db.base import Base
from app.utils.clock import utcnow


class Redemption(Base):
    """One row per (account, promotion code). The unique index is the guarantee."""

    __tablename__ = "promotion_redemptions"
    __table_args__ = (
        UniqueConstraint("account_id", "promotion_code_id", name="uq_redemption_account_code"),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    promotion_code_id = Column(Integer, ForeignKey("promotion_codes.id", ondelete="CASCADE"), nullable=False)
    redeemed_at = Column(DateTime, default=utcnow, nullable=False)
