from pydantic import BaseModel, Field
from typing import Dict, Literal, Optional
from datetime import datetime
from decimal import Decimal


class EntitlementResponse(BaseModel):
    plan_tier: str
    is_premium: bool
    subscription_status: str
    prompts_used: int
    limit: int
    remaining: Optional[int] = None
    period_anchor: datetime


class PromocodeRequest(BaseModel):
    code: str = Field(..., min_length=1)


class PromocodeValidationResponse(BaseModel):
    code: str
    discount_percent: int
    prices: Dict[str, Decimal]


class CheckoutRequest(BaseModel):
    plan: Literal["monthly", "yearly"]
    promocode: Optional[str] = None


class CheckoutResponse(BaseModel):
    checkout_url: str
    session_id: str
    plan: str
    amount: Decimal
    discount_percent: int = 0
