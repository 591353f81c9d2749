from sqlalchemy import Column, Integer, String, Boolean, DateTime, CheckConstraint
from app.db.base import Base
from app.utils.clock import utcnow


class PromotionCode(Base):
    __tablename__ = "promotion_codes"
    __table_args__ = (
        CheckConstraint("discount_percent BETWEEN 0 AND 100", name="ck_promotion_codes_discount_range"),
    )

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), unique=True, nullable=False, index=True)  # Stored upper-case
    description = Column(String, nullable=True)
    discount_percent = Column(Integer, nullable=False)  # 0-100
    max_uses = Column(Integer, nullable=False, default=0)  # 0 means unlimited
    used_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def is_expired(self, now) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def is_exhausted(self) -> bool:
        return self.max_uses > 0 and self.used_count >= self.max_uses

    def __repr__(self):
        return f"<PromotionCode(code={self.code}, percent={self.discount_percent}, used={self.used_count}/{self.max_uses})>"
