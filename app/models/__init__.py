from app.models.account import Account
from app.models.optimization_record import OptimizationRecord
from app.models.promotion_code import PromotionCode
from app.models.redemption import Redemption
from app.models.billing_event import BillingEventLog

__all__ = [
    "Account",
    "OptimizationRecord",
    "PromotionCode",
    "Redemption",
    "BillingEventLog",
]
