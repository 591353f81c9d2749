from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from app.db.base import Base
from app.utils.clock import utcnow


class OptimizationRecord(Base):
    __tablename__ = "optimization_records"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    input_text = Column(Text, nullable=False)
    output_text = Column(Text, nullable=False)
    audience = Column(String, nullable=False, default="general")
    focus_areas = Column(String, nullable=False, default="")  # Comma-joined tags
    created_at = Column(DateTime, default=utcnow, nullable=False)

    @property
    def focus_area_list(self) -> list[str]:
        return [tag for tag in (self.focus_areas or "").split(",") if tag]
